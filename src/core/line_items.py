# src/core/line_items.py
"""
Radmodeller för offerter, projekt och fakturor.

- LineItem:      rad med yta (area) × pris (rate), eller manuellt belopp (total)
- ExtraWorkItem: tilläggsarbete, alltid manuellt belopp
- SiteImage:     bildreferens (url + publicId), ev. med en ouppladdad fil i minnet

Regeln för radbelopp:
  area > 0 och rate > 0  → total = area * rate (härlett, skriver över allt annat)
  annars                 → total är manuellt och måste anges av användaren
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DESCRIPTION_MAX = 1000
NOTE_MAX = 500
IMAGE_DESCRIPTION_MAX = 200


class CamelModel(BaseModel):
    """Bas för allt som går till eller från backend: camelCase i JSON, endast ändliga tal."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)


class LineItem(CamelModel):
    description: str = ""
    area: Optional[float] = None
    rate: Optional[float] = 0.0
    total: Optional[float] = None
    note: Optional[str] = None


class ExtraWorkItem(CamelModel):
    description: str = ""
    total: Optional[float] = None
    note: Optional[str] = None


class SiteImage(CamelModel):
    url: Optional[str] = None
    public_id: Optional[str] = None
    description: Optional[str] = None
    # Filhandtag i minnet – följer aldrig med i JSON (utkast eller payload)
    file: Optional[Any] = Field(default=None, exclude=True)

    @property
    def is_uploaded(self) -> bool:
        return bool(self.url and self.public_id)


def is_derivable(area: Optional[float], rate: Optional[float]) -> bool:
    """Sant om radbeloppet kan räknas fram som area * rate."""
    return area is not None and rate is not None and area > 0 and rate > 0


def resolve_item_total(item: LineItem) -> float:
    """
    Radens gällande belopp.

    Härlett belopp vinner alltid; ett manuellt belopp som saknas räknas som 0.
    Negativa värden klipps inte här – de stoppas av valideringen.
    """
    if is_derivable(item.area, item.rate):
        return item.area * item.rate
    if item.total is None:
        return 0.0
    return float(item.total)


def _not_finite(value: Optional[float]) -> bool:
    return value is not None and not math.isfinite(value)


def validate_line_item(item: LineItem, prefix: str) -> Dict[str, str]:
    """
    Fältregler för en LineItem. Returnerar {fältväg: felmeddelande}.

    total krävs bara när raden inte kan härledas (area/rate saknas eller är 0).
    """
    errors: Dict[str, str] = {}

    description = (item.description or "").strip()
    if not description:
        errors[f"{prefix}.description"] = "Description is required"
    elif len(description) > DESCRIPTION_MAX:
        errors[f"{prefix}.description"] = "Description must be less than 1000 characters"

    if _not_finite(item.area):
        errors[f"{prefix}.area"] = "Area must be a number"
    elif item.area is not None and item.area < 0:
        errors[f"{prefix}.area"] = "Area must be non-negative"

    if item.rate is None:
        errors[f"{prefix}.rate"] = "Rate is required"
    elif _not_finite(item.rate):
        errors[f"{prefix}.rate"] = "Rate must be a number"
    elif item.rate < 0:
        errors[f"{prefix}.rate"] = "Rate must be non-negative"

    if not is_derivable(item.area, item.rate):
        if item.total is None:
            errors[f"{prefix}.total"] = "Total is required when area and rate are not both set"
        elif _not_finite(item.total):
            errors[f"{prefix}.total"] = "Total must be a number"
        elif item.total < 0:
            errors[f"{prefix}.total"] = "Total must be non-negative"

    if item.note and len(item.note) > NOTE_MAX:
        errors[f"{prefix}.note"] = "Note must be less than 500 characters"

    return errors


def validate_extra_work_item(item: ExtraWorkItem, prefix: str) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    description = (item.description or "").strip()
    if not description:
        errors[f"{prefix}.description"] = "Description is required"
    elif len(description) > DESCRIPTION_MAX:
        errors[f"{prefix}.description"] = "Description must be less than 1000 characters"

    if item.total is None:
        errors[f"{prefix}.total"] = "Total is required"
    elif _not_finite(item.total):
        errors[f"{prefix}.total"] = "Total must be a number"
    elif item.total < 0:
        errors[f"{prefix}.total"] = "Total must be non-negative"

    if item.note and len(item.note) > NOTE_MAX:
        errors[f"{prefix}.note"] = "Note must be less than 500 characters"

    return errors


def validate_site_image(image: SiteImage, prefix: str) -> Dict[str, str]:
    if image.description and len(image.description) > IMAGE_DESCRIPTION_MAX:
        return {f"{prefix}.description": "Description must be less than 200 characters"}
    return {}
