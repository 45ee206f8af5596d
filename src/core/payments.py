"""
Inbetalningar på projekt och fakturor.

amount_due = grand_total - summa inbetalningar
Projektet räknas som slutbetalt när amount_due <= 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from src.core.line_items import CamelModel


class Payment(CamelModel):
    amount: float
    date: str
    method: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class PaymentSummary:
    total_paid: float
    amount_due: float
    fully_paid: bool


def summarize_payments(grand_total: float, payments: Iterable[Payment]) -> PaymentSummary:
    total_paid = 0.0
    for p in payments:
        total_paid += float(p.amount or 0.0)

    amount_due = float(grand_total or 0.0) - total_paid
    return PaymentSummary(
        total_paid=total_paid,
        amount_due=amount_due,
        fully_paid=amount_due <= 0,
    )


def check_new_payment(grand_total: float, payments: Iterable[Payment], amount: float) -> None:
    """
    Kontrollerar en ny inbetalning innan den läggs till.
    Höjer ValueError om beloppet inte är positivt eller om
    summan av inbetalningar skulle överstiga slutsumman.
    """
    if amount is None or amount <= 0:
        raise ValueError("Payment amount must be positive")

    summary = summarize_payments(grand_total, payments)
    if summary.total_paid + amount > float(grand_total or 0.0):
        raise ValueError("Total payments exceed grand total")
