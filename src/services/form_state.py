"""
Formulärtillstånd för offerter, projekt och fakturor.

Kontrollern äger raderna (items) och tilläggsarbetena (extra_work) under en
redigeringssession. Varje ändring går genom kontrollerns metoder:

  ändring → radbelopp löses (area * rate eller manuellt) → recompute_all()
          → utkast planeras i DraftStore (bara i skapa-läge)

submit() validerar, räknar om en sista gång, laddar upp ev. nya bilder och
skickar till backend. Lyckas det tas utkastet bort; misslyckas det ligger
utkastet kvar så att inget arbete går förlorat.

Tillstånd: EMPTY → EDITING → (INVALID | SUBMITTING) → (SUBMITTED | EDITING)
"""

from __future__ import annotations

import math
import re
import sys
import threading
from dataclasses import dataclass, field
from datetime import date as date_cls
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.core.line_items import (
    ExtraWorkItem,
    LineItem,
    SiteImage,
    is_derivable,
    validate_extra_work_item,
    validate_line_item,
    validate_site_image,
)
from src.core.payments import Payment, check_new_payment, summarize_payments
from src.core.totals import QuotationTotals, calculate_totals
from src.server.schemas.quote import ClientMobile, DraftRecord, FormKind, FormPayload
from src.services.backend_client import ApiError
from src.services.default_terms import load_default_terms
from src.services.draft_store import DRAFT_KEYS, DraftStore

DATE_FORMAT = "%Y-%m-%d"
RE_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
RE_NAME = re.compile(r"[A-Za-z\s]+")
DEFAULT_COUNTRY_CODE = "+91"

ITEM_FIELDS = ("description", "area", "rate", "total", "note")
EXTRA_WORK_FIELDS = ("description", "total", "note")
NUMERIC_FIELDS = ("area", "rate", "total")
FORM_FIELDS = (
    "client_name",
    "client_address",
    "country_code",
    "client_number",
    "date",
    "note",
    "quotation_number",
)


class FormStatus(str, Enum):
    EMPTY = "empty"
    EDITING = "editing"
    INVALID = "invalid"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


@dataclass
class SubmitResult:
    status: str  # "submitted" | "invalid" | "failed" | "ignored"
    record: Optional[Dict[str, Any]] = None
    errors: Dict[str, str] = field(default_factory=dict)
    messages: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "submitted"


def _to_number(value: Any, field_name: str) -> Optional[float]:
    """None och tom sträng betyder "saknas"; allt annat måste vara ett tal."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    if isinstance(value, bool):
        raise ValueError(f"{field_name.capitalize()} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field_name.capitalize()} must be a number") from None
    # "nan" och "inf" går igenom float() men är inga belopp
    if not math.isfinite(number):
        raise ValueError(f"{field_name.capitalize()} must be a number")
    return number


def _blank_item() -> LineItem:
    return LineItem(description="", area=None, rate=0.0, total=None, note="")


def _blank_extra_work() -> ExtraWorkItem:
    return ExtraWorkItem(description="", total=None, note="")


class FormStateController:
    def __init__(
        self,
        kind: FormKind,
        *,
        default_terms: Optional[Iterable[str]] = None,
        draft_store: Any = None,
        backend: Any = None,
        uploader: Any = None,
        record_id: Optional[str] = None,
        today: Optional[date_cls] = None,
    ) -> None:
        self.kind = FormKind(kind)
        self.record_id = record_id
        if self.kind is FormKind.INVOICE and not record_id:
            raise ValueError("Invoice forms can only edit an existing invoice")

        self.draft_store = draft_store
        self.backend = backend
        self.uploader = uploader
        self.status = FormStatus.EMPTY

        self.client_name = ""
        self.client_address = ""
        self.country_code = DEFAULT_COUNTRY_CODE
        self.client_number = ""
        self.date = (today or date_cls.today()).strftime(DATE_FORMAT)
        self.quotation_number: Optional[str] = None
        self.note = ""
        self.terms: List[str] = [str(t) for t in (default_terms or [])]

        self._items: List[LineItem] = [_blank_item()]
        self._extra_work: List[ExtraWorkItem] = []
        self._site_images: List[SiteImage] = []
        self._payments: List[Payment] = []
        self.discount = 0.0
        self.amount_due: Optional[float] = None

        # Utkast som kan återställas på användarens begäran
        self.available_draft: Optional[DraftRecord] = None

        self._submit_lock = threading.Lock()
        self._in_flight = False

        self.recompute_all()

    @classmethod
    def new(cls, kind: FormKind, *, draft_store: Any = None, **kwargs: Any) -> "FormStateController":
        """
        Nytt formulär i skapa-läge med standardvillkoren förifyllda.

        Ett sparat utkast läses bara in som erbjudande (available_draft);
        formuläret ändras först när anroparen kör restore_draft().
        """
        kind = FormKind(kind)
        kwargs.setdefault("default_terms", load_default_terms())
        if draft_store is None and kind in DRAFT_KEYS:
            draft_store = DraftStore.for_kind(kind)

        form = cls(kind, draft_store=draft_store, **kwargs)
        if draft_store is not None:
            form.available_draft = draft_store.load_if_present()
        return form

    @classmethod
    def from_record(
        cls,
        kind: FormKind,
        record_id: str,
        record: Dict[str, Any],
        **kwargs: Any,
    ) -> "FormStateController":
        """
        Skapar en kontroller i redigeringsläge från en post hämtad från backend.
        Redigeringsläget läser eller skriver aldrig utkast.
        """
        form = cls(kind, record_id=record_id, **kwargs)
        form._load_record(record)
        return form

    # ---- Läsning -----------------------------------------------------------
    @property
    def is_edit_mode(self) -> bool:
        return self.record_id is not None

    @property
    def items(self) -> Tuple[LineItem, ...]:
        return tuple(item.model_copy() for item in self._items)

    @property
    def extra_work(self) -> Tuple[ExtraWorkItem, ...]:
        return tuple(ew.model_copy() for ew in self._extra_work)

    @property
    def site_images(self) -> Tuple[SiteImage, ...]:
        return tuple(img.model_copy() for img in self._site_images)

    @property
    def payments(self) -> Tuple[Payment, ...]:
        return tuple(p.model_copy() for p in self._payments)

    @property
    def totals(self) -> QuotationTotals:
        return self._totals

    @property
    def subtotal(self) -> float:
        return self._totals.subtotal

    @property
    def grand_total(self) -> float:
        return self._totals.grand_total

    @property
    def can_remove_item(self) -> bool:
        return len(self._items) > 1

    @property
    def has_billable_item(self) -> bool:
        return any(
            (item.description or "").strip() and (item.rate or 0) > 0
            for item in self._items
        )

    # ---- Rader -------------------------------------------------------------
    def add_item(self) -> int:
        self._items.append(_blank_item())
        self.recompute_all()
        self._touch()
        return len(self._items) - 1

    def remove_item(self, index: int) -> bool:
        """Tar bort en rad. Den sista raden får inte tas bort (returnerar False)."""
        self._check_index(self._items, index)
        if len(self._items) <= 1:
            return False
        del self._items[index]
        self.recompute_all()
        self._touch()
        return True

    def update_item_field(self, index: int, field_name: str, value: Any) -> None:
        if field_name not in ITEM_FIELDS:
            raise ValueError(f"Unknown item field '{field_name}'")
        self._check_index(self._items, index)

        item = self._items[index]
        was_derivable = is_derivable(item.area, item.rate)

        if field_name in NUMERIC_FIELDS:
            value = _to_number(value, field_name)
        setattr(item, field_name, value)

        self._resolve_item(item, was_derivable, field_name)
        self.recompute_all()
        self._touch()

    @staticmethod
    def _resolve_item(item: LineItem, was_derivable: bool, field_name: str) -> None:
        if is_derivable(item.area, item.rate):
            item.total = item.area * item.rate
        elif was_derivable and field_name in ("area", "rate"):
            # Det härledda beloppet var aldrig användarens – kräv ett nytt manuellt belopp
            item.total = None

    # ---- Tilläggsarbeten -----------------------------------------------------
    def add_extra_work(self) -> int:
        self._require_extra_work()
        self._extra_work.append(_blank_extra_work())
        self.recompute_all()
        self._touch()
        return len(self._extra_work) - 1

    def remove_extra_work(self, index: int) -> None:
        self._require_extra_work()
        self._check_index(self._extra_work, index)
        del self._extra_work[index]
        self.recompute_all()
        self._touch()

    def update_extra_work_field(self, index: int, field_name: str, value: Any) -> None:
        self._require_extra_work()
        if field_name not in EXTRA_WORK_FIELDS:
            raise ValueError(f"Unknown extra work field '{field_name}'")
        self._check_index(self._extra_work, index)

        if field_name == "total":
            value = _to_number(value, field_name)
        setattr(self._extra_work[index], field_name, value)
        self.recompute_all()
        self._touch()

    def _require_extra_work(self) -> None:
        if not self.kind.has_extra_work:
            raise ValueError("Quotation forms have no extra work")

    # ---- Övriga fält ---------------------------------------------------------
    def update_discount(self, value: Any) -> None:
        discount = _to_number(value, "discount")
        self.discount = 0.0 if discount is None else discount
        self.recompute_all()
        self._touch()

    def update_field(self, field_name: str, value: Any) -> None:
        if field_name not in FORM_FIELDS:
            raise ValueError(f"Unknown form field '{field_name}'")
        if field_name == "quotation_number" and self.kind is FormKind.QUOTATION:
            raise ValueError("Quotation forms have no quotation number field")
        setattr(self, field_name, "" if value is None else str(value))
        self._touch()

    def set_terms(self, terms: Iterable[str]) -> None:
        self.terms = [str(t) for t in terms]
        self._touch()

    def add_site_image(
        self,
        *,
        file: Any = None,
        url: Optional[str] = None,
        public_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> int:
        self._site_images.append(
            SiteImage(url=url, public_id=public_id, description=description, file=file)
        )
        self._touch()
        return len(self._site_images) - 1

    def remove_site_image(self, index: int) -> None:
        self._check_index(self._site_images, index)
        del self._site_images[index]
        self._touch()

    def add_payment(
        self,
        amount: Any,
        *,
        date: Optional[str] = None,
        method: Optional[str] = None,
        note: Optional[str] = None,
    ) -> None:
        """Registrerar en inbetalning (projekt och fakturor)."""
        self._require_extra_work()
        amount_f = _to_number(amount, "amount")
        check_new_payment(self.grand_total, self._payments, amount_f)
        self._payments.append(
            Payment(
                amount=amount_f,
                date=date or date_cls.today().strftime(DATE_FORMAT),
                method=method,
                note=note or "Advance Payment",
            )
        )
        self.recompute_all()
        self._touch()

    # ---- Omräkning -----------------------------------------------------------
    def recompute_all(self) -> QuotationTotals:
        """
        Löser alla härledda radbelopp och räknar om subtotal/slutsumma
        (och kvarvarande belopp för projekt/fakturor). Synkront, idempotent.
        """
        for item in self._items:
            if is_derivable(item.area, item.rate):
                item.total = item.area * item.rate

        extra_work = self._extra_work if self.kind.has_extra_work else []
        self._totals = calculate_totals(self._items, extra_work, self.discount)

        if self.kind.has_extra_work:
            self.amount_due = summarize_payments(self._totals.grand_total, self._payments).amount_due
        else:
            self.amount_due = None
        return self._totals

    # ---- Validering ----------------------------------------------------------
    def validate(self) -> Dict[str, str]:
        """Returnerar {fältväg: felmeddelande}; tom dict betyder giltigt formulär."""
        errors: Dict[str, str] = {}

        name = (self.client_name or "").strip()
        if not name:
            errors["clientName"] = "Client name is required"
        elif len(name) > 100:
            errors["clientName"] = "Name must be less than 100 characters"
        elif not RE_NAME.fullmatch(name):
            errors["clientName"] = "Name can only contain letters and spaces"

        address = (self.client_address or "").strip()
        if not address:
            errors["clientAddress"] = "Client address is required"
        elif len(address) < 10:
            errors["clientAddress"] = "Address must be at least 10 characters"
        elif len(address) > 500:
            errors["clientAddress"] = "Address must be less than 500 characters"

        number_error = self._validate_client_number()
        if number_error:
            errors["clientNumber"] = number_error

        date_error = self._validate_date()
        if date_error:
            errors["date"] = date_error

        if self.kind is not FormKind.QUOTATION and not (self.quotation_number or "").strip():
            errors["quotationNumber"] = "Quotation number is required"

        if not self._items:
            errors["items"] = "At least one item is required"
        for i, item in enumerate(self._items):
            errors.update(validate_line_item(item, f"items.{i}"))

        if self.kind.has_extra_work:
            for i, ew in enumerate(self._extra_work):
                errors.update(validate_extra_work_item(ew, f"extraWork.{i}"))

        if self.discount is None or self.discount < 0:
            errors["discount"] = "Discount must be non-negative"

        if self.note and len(self.note) > 500:
            errors["note"] = "Note must be less than 500 characters"

        for i, term in enumerate(self.terms):
            if len(term) > 1000:
                errors[f"terms.{i}"] = "Term must be less than 1000 characters"

        for i, img in enumerate(self._site_images):
            errors.update(validate_site_image(img, f"siteImages.{i}"))

        return errors

    def _validate_client_number(self) -> Optional[str]:
        number = (self.client_number or "").strip()
        if not number:
            return "Client number is required"
        if not number.isdigit():
            return "Number must contain digits only"
        if self.country_code == "+91":
            if len(number) != 10:
                return "Indian mobile number must be exactly 10 digits"
        elif not 7 <= len(number) <= 15:
            return "Phone number must be between 7 and 15 digits"
        return None

    def _validate_date(self) -> Optional[str]:
        value = (self.date or "").strip()
        if not value:
            return "Date is required"
        if not RE_DATE.fullmatch(value):
            return "Date must be in YYYY-MM-DD format"
        try:
            datetime.strptime(value, DATE_FORMAT)
        except ValueError:
            return "Date must be in YYYY-MM-DD format"
        return None

    # ---- Utkast --------------------------------------------------------------
    def snapshot(self) -> DraftRecord:
        return DraftRecord(
            kind=self.kind,
            client_name=self.client_name,
            client_address=self.client_address,
            country_code=self.country_code,
            client_number=self.client_number,
            date=self.date,
            quotation_number=self.quotation_number,
            items=[item.model_copy() for item in self._items],
            extra_work=[ew.model_copy() for ew in self._extra_work],
            discount=self.discount,
            note=self.note,
            terms=list(self.terms),
            site_images=[img.model_copy(update={"file": None}) for img in self._site_images],
            subtotal=self.subtotal,
            grand_total=self.grand_total,
        )

    def restore(self, draft: DraftRecord) -> None:
        """
        Ersätter formulärets innehåll med ett utkast och räknar om allt.
        Bilder utan url/publicId i utkastet (filen fanns bara i minnet) tas inte med.
        """
        if FormKind(draft.kind) is not self.kind:
            raise ValueError(f"Draft for '{draft.kind}' cannot be restored into a '{self.kind.value}' form")

        self.client_name = draft.client_name
        self.client_address = draft.client_address
        self.country_code = draft.country_code or DEFAULT_COUNTRY_CODE
        self.client_number = draft.client_number
        self.date = draft.date or self.date
        self.quotation_number = draft.quotation_number
        self.note = draft.note
        self.terms = list(draft.terms)
        self.discount = float(draft.discount or 0.0)

        self._items = [item.model_copy() for item in draft.items] or [_blank_item()]
        self._extra_work = [ew.model_copy() for ew in draft.extra_work]
        self._site_images = [img.model_copy() for img in draft.site_images if img.is_uploaded]

        self.recompute_all()
        self.status = FormStatus.EDITING

    def restore_draft(self) -> bool:
        """
        Återställer det erbjudna utkastet (användaren har bekräftat).
        Returnerar False om inget utkast finns att återställa.
        """
        draft = self.available_draft
        if draft is None or self.draft_store is None:
            return False
        self.draft_store.hydrate(draft, self)
        self.available_draft = None
        return True

    def dismiss_draft(self) -> None:
        """Användaren avböjer utkastet: det tas bort från lagringen."""
        self.available_draft = None
        if self.draft_store is not None and not self.is_edit_mode:
            self.draft_store.discard()

    def _touch(self) -> None:
        if self.status is not FormStatus.SUBMITTING:
            self.status = FormStatus.EDITING
        self._schedule_draft()

    def _schedule_draft(self) -> None:
        if self.is_edit_mode or self.draft_store is None:
            return
        self.draft_store.schedule_save(self.snapshot())

    # ---- Inskickning ---------------------------------------------------------
    def to_payload(self) -> Dict[str, Any]:
        """Serialiserar formuläret till backendens JSON-format (camelCase)."""
        has_extra = self.kind.has_extra_work
        payload = FormPayload(
            client_name=self.client_name.strip(),
            client_address=self.client_address.strip(),
            client_number=f"{self.country_code}{self.client_number.strip()}",
            client_mobile=ClientMobile(country_code=self.country_code, number=self.client_number.strip()),
            date=self.date,
            items=[item.model_copy() for item in self._items],
            extra_work=[ew.model_copy() for ew in self._extra_work] if has_extra else None,
            discount=self.discount,
            note=self.note or "",
            terms=[t for t in self.terms if t.strip()],
            subtotal=self.subtotal,
            grand_total=self.grand_total,
            site_images=[img.model_copy() for img in self._site_images if img.is_uploaded],
            quotation_number=self.quotation_number if self.kind is not FormKind.QUOTATION else None,
            payment_history=[p.model_copy() for p in self._payments] if has_extra else None,
            amount_due=self.amount_due if has_extra else None,
        )
        return payload.model_dump(by_alias=True, exclude_none=True)

    def _resolve_uploads(self) -> None:
        for img in self._site_images:
            if img.is_uploaded or img.file is None:
                continue
            if self.uploader is None:
                raise ApiError("Upload service is not configured")
            uploaded = self.uploader.upload(img.file)
            if not uploaded.get("url") or not uploaded.get("publicId"):
                raise ApiError("Upload response is missing url or publicId")
            img.url = uploaded["url"]
            img.public_id = uploaded["publicId"]
            img.file = None

    def submit(self) -> SubmitResult:
        """
        Validerar och skickar formuläret. Ett andra anrop medan ett redan pågår
        ignoreras (status "ignored") – bara ett anrop når backend.
        """
        with self._submit_lock:
            if self._in_flight:
                return SubmitResult(status="ignored")
            self._in_flight = True

        try:
            return self._submit()
        finally:
            with self._submit_lock:
                self._in_flight = False

    def _submit(self) -> SubmitResult:
        errors = self.validate()
        if errors:
            self.status = FormStatus.INVALID
            return SubmitResult(status="invalid", errors=errors, messages=list(errors.values()))

        if self.backend is None:
            raise RuntimeError("No backend configured for form submission")

        self.status = FormStatus.SUBMITTING
        self.recompute_all()

        try:
            self._resolve_uploads()
            payload = self.to_payload()
            if self.is_edit_mode:
                record = self.backend.update(self.kind, self.record_id, payload)
            else:
                record = self.backend.create(self.kind, payload)
        except ApiError as e:
            print(f"[form_state] Inskickning av {self.kind.value} misslyckades: {e.message}", file=sys.stderr)
            self.status = FormStatus.EDITING
            # Spara ev. nya bildreferenser i utkastet inför nästa försök
            self._schedule_draft()
            return SubmitResult(status="failed", errors=e.field_errors, messages=e.messages)
        except BaseException:
            # Oväntade fel släpps vidare, men formuläret får inte fastna i SUBMITTING
            print(f"[form_state] Oväntat fel vid inskickning av {self.kind.value}", file=sys.stderr)
            self.status = FormStatus.EDITING
            self._schedule_draft()
            raise

        if not self.is_edit_mode and self.draft_store is not None:
            self.draft_store.discard()

        self.status = FormStatus.SUBMITTED
        action = "updated" if self.is_edit_mode else "created"
        return SubmitResult(
            status="submitted",
            record=record,
            messages=[f"{self.kind.value.capitalize()} {action} successfully!"],
        )

    # ---- Hjälpfunktioner -----------------------------------------------------
    @staticmethod
    def _check_index(collection: List[Any], index: int) -> None:
        if not 0 <= index < len(collection):
            raise IndexError(f"Index {index} out of range")

    def _load_record(self, record: Dict[str, Any]) -> None:
        """Läser in en backend-post (camelCase) i formuläret."""
        self.client_name = str(record.get("clientName") or "")
        self.client_address = str(record.get("clientAddress") or "")

        mobile = record.get("clientMobile") or {}
        if isinstance(mobile, dict) and mobile.get("countryCode") and mobile.get("number"):
            self.country_code = str(mobile["countryCode"])
            self.client_number = str(mobile["number"])
        else:
            # Äldre poster: hela numret i clientNumber
            raw_number = str(record.get("clientNumber") or "")
            if raw_number.startswith(DEFAULT_COUNTRY_CODE):
                raw_number = raw_number[len(DEFAULT_COUNTRY_CODE):]
            self.client_number = raw_number

        raw_date = record.get("date")
        if raw_date:
            self.date = str(raw_date)[:10]

        self.quotation_number = record.get("quotationNumber") if self.kind is not FormKind.QUOTATION else None
        self.note = str(record.get("note") or "")
        terms = record.get("terms")
        if isinstance(terms, list):
            self.terms = [str(t) for t in terms]
        self.discount = float(record.get("discount") or 0.0)

        self._items = [LineItem.model_validate(i) for i in record.get("items") or []] or [_blank_item()]
        self._extra_work = [ExtraWorkItem.model_validate(e) for e in record.get("extraWork") or []]
        self._site_images = [SiteImage.model_validate(s) for s in record.get("siteImages") or []]
        self._payments = [Payment.model_validate(p) for p in record.get("paymentHistory") or []]

        self.recompute_all()
