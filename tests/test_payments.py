import pytest

from src.core.payments import Payment, check_new_payment, summarize_payments


def _paid(*amounts):
    return [Payment(amount=a, date="2024-05-01") for a in amounts]


def test_amount_due_and_fully_paid():
    s = summarize_payments(7500, _paid(2500, 1000))
    assert s.total_paid == 3500.0
    assert s.amount_due == 4000.0
    assert not s.fully_paid

    assert summarize_payments(7500, _paid(7500)).fully_paid


def test_no_payments():
    s = summarize_payments(0, [])
    assert s.amount_due == 0.0
    assert s.fully_paid


def test_new_payment_rules():
    check_new_payment(7500, _paid(2500), 5000)
    with pytest.raises(ValueError, match="exceed"):
        check_new_payment(7500, _paid(2500), 5000.01)
    with pytest.raises(ValueError, match="positive"):
        check_new_payment(7500, [], -10)


def test_payment_reads_camel_case():
    p = Payment.model_validate({"amount": 100, "date": "2024-05-01", "method": "Cash"})
    assert p.amount == 100.0
    assert p.note is None
