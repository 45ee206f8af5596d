"""
Summering av rader: subtotal och slutsumma.

Grundidé:
- Varje LineItem får sitt gällande belopp via resolve_item_total
  (area * rate om båda > 0, annars det manuella beloppet).
- ExtraWorkItem räknas alltid med sitt manuella belopp.
- subtotal    = summa radbelopp + summa tilläggsarbeten
- grand_total = max(0, subtotal - discount)

Modulen är fri från sidoeffekter: samma indata ger alltid exakt samma utdata.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from src.core.line_items import ExtraWorkItem, LineItem, resolve_item_total


@dataclass(frozen=True)
class QuotationTotals:
    item_totals: Tuple[float, ...]
    subtotal: float
    discount: float
    grand_total: float


def calculate_totals(
    items: Iterable[LineItem],
    extra_work: Iterable[ExtraWorkItem] = (),
    discount: Optional[float] = 0.0,
) -> QuotationTotals:
    item_totals = tuple(resolve_item_total(item) for item in items)

    extra_total = 0.0
    for ew in extra_work:
        extra_total += float(ew.total or 0.0)

    subtotal = sum(item_totals, 0.0) + extra_total
    discount_f = float(discount or 0.0)

    # Rabatt större än subtotal ger 0, aldrig ett negativt belopp
    grand_total = max(0.0, subtotal - discount_f)

    return QuotationTotals(
        item_totals=item_totals,
        subtotal=subtotal,
        discount=discount_f,
        grand_total=grand_total,
    )
