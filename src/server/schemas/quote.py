# src/server/schemas/quote.py
from enum import Enum
from typing import List, Optional

from pydantic import Field

from src.core.line_items import CamelModel, ExtraWorkItem, LineItem, SiteImage
from src.core.payments import Payment


class FormKind(str, Enum):
    QUOTATION = "quotation"
    PROJECT = "project"
    INVOICE = "invoice"

    @property
    def has_extra_work(self) -> bool:
        return self is not FormKind.QUOTATION


class ClientMobile(CamelModel):
    country_code: str
    number: str


class DraftRecord(CamelModel):
    """
    Ögonblicksbild av hela formuläret för lokal lagring.

    Summorna sparas med men räknas alltid om vid återställning.
    Filhandtag i site_images följer aldrig med.
    """
    kind: FormKind
    client_name: str = ""
    client_address: str = ""
    country_code: str = "+91"
    client_number: str = ""
    date: str = ""
    quotation_number: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    extra_work: List[ExtraWorkItem] = Field(default_factory=list)
    discount: float = 0.0
    note: str = ""
    terms: List[str] = Field(default_factory=list)
    site_images: List[SiteImage] = Field(default_factory=list)
    subtotal: float = 0.0
    grand_total: float = 0.0
    saved_at: Optional[str] = None


class FormPayload(CamelModel):
    """
    Det som skickas till backendens create/update-endpoint.
    Serialiseras med camelCase-nycklar (model_dump(by_alias=True)).
    """
    client_name: str
    client_address: str
    client_number: str
    client_mobile: ClientMobile
    date: str
    items: List[LineItem]
    extra_work: Optional[List[ExtraWorkItem]] = None
    discount: float = 0.0
    note: str = ""
    terms: List[str] = Field(default_factory=list)
    subtotal: float
    grand_total: float
    site_images: List[SiteImage] = Field(default_factory=list)
    quotation_number: Optional[str] = None
    payment_history: Optional[List[Payment]] = None
    amount_due: Optional[float] = None


class TotalsPreviewIn(CamelModel):
    items: List[LineItem]
    extra_work: List[ExtraWorkItem] = Field(default_factory=list)
    discount: float = Field(default=0.0, ge=0)


class TotalsPreviewOut(CamelModel):
    item_totals: List[float]
    subtotal: float
    discount: float
    grand_total: float
