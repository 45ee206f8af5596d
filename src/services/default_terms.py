from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path
from typing import Any, List, Optional, Tuple

import yaml

from src.server.settings.config import settings

# Används om YAML-filen saknas eller är trasig
BUILTIN_TERMS: Tuple[str, ...] = (
    "50% advance payment required to start work, 30% due at 70% project completion, "
    "and 20% within 7 days of completion.",
    "The advance payment is non-refundable under any circumstances.",
)


@lru_cache(maxsize=8)
def _load_raw_terms_yaml(path_str: str) -> Any:
    """
    Läser YAML-filen med villkor en gång per sökväg och cache:ar resultatet.
    Returnerar None om filen saknas eller inte går att läsa.
    """
    path = Path(path_str)
    if not path.exists():
        return None

    try:
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        print(f"[default_terms] Kunde inte läsa {path}: {e}", file=sys.stderr)
        return None


def load_default_terms(path: Optional[str] = None) -> List[str]:
    """
    Returnerar standardvillkoren som lista med strängar.

    Stödjer två YAML-strukturer:

      1) Top-nivå lista: [ "villkor 1", "villkor 2" ]
      2) Top-nivå dict med "terms": [ ... ]

    Tomma rader tas bort. Faller tillbaka på BUILTIN_TERMS om inget
    användbart hittas.
    """
    raw = _load_raw_terms_yaml(str(path or settings.default_terms_path))

    if isinstance(raw, dict):
        src = raw.get("terms")
    else:
        src = raw

    if not isinstance(src, list):
        return list(BUILTIN_TERMS)

    terms = [str(t).strip() for t in src if t is not None and str(t).strip()]
    if not terms:
        return list(BUILTIN_TERMS)
    return terms
