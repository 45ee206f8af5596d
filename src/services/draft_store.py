# fil: src/services/draft_store.py
"""
Lokala utkast för formulär i skapa-läge.

Ett utkast (DraftRecord) sparas som JSON-text under en fast nyckel per
formulärtyp. Sparandet är debouncat: varje ändring startar om en timer och
först när det varit tyst i delay_seconds skrivs den senaste ögonblicksbilden.

Tillstånd:
  NO_DRAFT → PENDING (timer igång) → SAVED
  SAVED    → PENDING vid ny ändring
  SAVED/PENDING → NO_DRAFT vid discard() (eller lyckad inskickning)
"""

from __future__ import annotations

import os
import sys
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from src.server.schemas.quote import DraftRecord, FormKind
from src.server.settings.config import settings

if TYPE_CHECKING:
    from src.services.form_state import FormStateController

DRAFT_KEYS: Dict[FormKind, str] = {
    FormKind.QUOTATION: "quotation_form_draft",
    FormKind.PROJECT: "project_form_draft",
}


def draft_key_for(kind: FormKind) -> str:
    """Fast lagringsnyckel per formulärtyp. Fakturor har inga utkast."""
    try:
        return DRAFT_KEYS[FormKind(kind)]
    except KeyError:
        raise ValueError(f"No draft storage for form kind '{kind}'") from None


# -------------------------------------------------------------
#  LAGRING (nyckel → text)
# -------------------------------------------------------------

class StorageReadError(Exception):
    """Värdet finns men går inte att läsa (t.ex. trasig fil eller fel teckenkodning)."""


class KeyValueStorage(Protocol):
    # get() höjer StorageReadError för ett värde som finns men inte går att läsa
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Lagring i minnet – för tester och korta sessioner."""

    def __init__(self) -> None:
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileStorage:
    """
    En fil per nyckel i en katalog, t.ex. knowledge/drafts/quotation_form_draft.json.

    Skrivning sker via en temporär fil + os.replace så att en halvskriven
    fil aldrig blir kvar.
    """

    def __init__(self, directory: Optional[str] = None) -> None:
        self.directory = Path(directory or settings.draft_dir)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            print(f"[draft_store] Kunde inte läsa {path}: {e}", file=sys.stderr)
            raise StorageReadError(str(e)) from e

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(value, encoding="utf-8")
        os.replace(tmp_path, path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# -------------------------------------------------------------
#  DRAFT STORE
# -------------------------------------------------------------

class DraftState(str, Enum):
    NO_DRAFT = "no_draft"
    PENDING = "pending"
    SAVED = "saved"


def _default_timer(delay: float, callback: Callable[[], None]) -> Any:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    return timer


class DraftStore:
    def __init__(
        self,
        storage: KeyValueStorage,
        key: str,
        *,
        delay_seconds: Optional[float] = None,
        timer_factory: Optional[Callable[[float, Callable[[], None]], Any]] = None,
    ) -> None:
        self.storage = storage
        self.key = key
        self.delay_seconds = (
            settings.draft_debounce_seconds if delay_seconds is None else float(delay_seconds)
        )
        self._timer_factory = timer_factory or _default_timer

        # Allt nedan skyddas av _lock: byte av timer måste vara atomärt
        self._lock = threading.Lock()
        self._timer: Any = None
        self._pending: Optional[DraftRecord] = None
        self._generation = 0
        self._has_record = False
        self._state = DraftState.NO_DRAFT
        if self._read_raw() is not None:
            self._has_record = True
            self._state = DraftState.SAVED

    @classmethod
    def for_kind(cls, kind: FormKind, storage: Optional[KeyValueStorage] = None, **kwargs: Any) -> "DraftStore":
        return cls(storage or JsonFileStorage(), draft_key_for(kind), **kwargs)

    @property
    def state(self) -> DraftState:
        return self._state

    # ---- Sparande ------------------------------------------------------------
    def schedule_save(self, snapshot: DraftRecord) -> None:
        """
        Planerar att spara snapshot efter delay_seconds utan nya anrop.
        Ett nytt anrop avbryter och ersätter den väntande timern.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()

            self._generation += 1
            generation = self._generation
            self._pending = snapshot
            self._timer = self._timer_factory(self.delay_seconds, lambda: self._fire(generation))
            self._state = DraftState.PENDING
            self._timer.start()

    def _fire(self, generation: int) -> None:
        with self._lock:
            # En timer som hunnit ersättas skriver ingenting
            if generation != self._generation or self._pending is None:
                return
            snapshot = self._pending
            self._pending = None
            self._timer = None
            self._write(snapshot)

    def flush(self) -> bool:
        """Skriver ett väntande utkast direkt. Returnerar True om något skrevs."""
        with self._lock:
            if self._pending is None:
                return False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            snapshot = self._pending
            self._pending = None
            self._write(snapshot)
            return True

    def _write(self, snapshot: DraftRecord) -> None:
        record = snapshot.model_copy(update={"saved_at": datetime.now().isoformat(timespec="seconds")})
        try:
            self.storage.set(self.key, record.model_dump_json(by_alias=True))
        except OSError as e:
            print(f"[draft_store] Kunde inte spara utkast '{self.key}': {e}", file=sys.stderr)
            self._state = DraftState.SAVED if self._has_record else DraftState.NO_DRAFT
            return

        self._has_record = True
        self._state = DraftState.SAVED
        print(f"[draft_store] Utkast sparat: '{self.key}'", file=sys.stderr)

    # ---- Läsning / återställning ---------------------------------------------
    def load_if_present(self) -> Optional[DraftRecord]:
        """
        Returnerar sparat utkast, eller None om inget finns.
        Ett oläsbart utkast tas bort och behandlas som om inget fanns.
        """
        raw = self._read_raw()
        if raw is None:
            return None

        try:
            return DraftRecord.model_validate_json(raw)
        except ValidationError as e:
            print(
                f"[draft_store] Oläsbart utkast '{self.key}' kastas: {e.error_count()} fel",
                file=sys.stderr,
            )
            self._drop_corrupt()
            return None

    def _read_raw(self) -> Optional[str]:
        try:
            return self.storage.get(self.key)
        except StorageReadError:
            self._drop_corrupt()
            return None

    def _drop_corrupt(self) -> None:
        try:
            self.storage.remove(self.key)
        except OSError as e:
            print(f"[draft_store] Kunde inte ta bort utkast '{self.key}': {e}", file=sys.stderr)
        with self._lock:
            self._has_record = False
            if self._pending is None:
                self._state = DraftState.NO_DRAFT

    def hydrate(self, draft: DraftRecord, form: "FormStateController") -> None:
        """
        Ersätter formulärets innehåll med utkastet. Formuläret räknar om
        alla summor direkt – sparade summor litar vi aldrig på.
        """
        form.restore(draft)

    # ---- Borttagning ---------------------------------------------------------
    def cancel_pending(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            self._pending = None
            self._state = DraftState.SAVED if self._has_record else DraftState.NO_DRAFT

    def discard(self) -> None:
        """Tar bort utkastet. Att ta bort ett utkast som inte finns är ok."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._generation += 1
            self._pending = None
            self.storage.remove(self.key)
            self._has_record = False
            self._state = DraftState.NO_DRAFT
        print(f"[draft_store] Utkast borttaget: '{self.key}'", file=sys.stderr)
