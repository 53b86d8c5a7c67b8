import pytest

from storeflow.errors import OrderAlreadyPaid, OverpaymentRejected, ValidationError
from storeflow.models import PaymentRecord
from storeflow.services import order_service, payment_service


@pytest.fixture
def order(db_session, store_a):
    """A 100000-cent custom order, nothing paid yet."""
    return order_service.create_order(
        store_id=store_a.id,
        items=[{"product_name": "Custom print", "quantity": 1, "price": 100000}],
    )


def _pay(order, amount, method="cash"):
    return payment_service.add_payment(order_id=order["id"], amount=amount, payment_method=method)


def test_partial_then_overpay_then_settle(db_session, order):
    result = _pay(order, 70000)
    assert result["order"]["payment_status"] == "partial"
    assert result["order"]["paid_at"] is None

    with pytest.raises(OverpaymentRejected) as exc:
        _pay(order, 40000)
    assert exc.value.payload["remaining_amount"] == 30000

    result = _pay(order, 30000, method="transfer")
    assert result["order"]["payment_status"] == "paid"
    assert result["order"]["paid_amount"] == 100000
    assert result["order"]["remaining_amount"] == 0
    assert result["order"]["paid_at"] is not None


def test_paid_amount_matches_records(db_session, order):
    for amount in (10000, 25000, 5000):
        _pay(order, amount)

    records = db_session.query(PaymentRecord).filter_by(order_id=order["id"]).all()
    summary = order_service.get_order_summary(order["id"])
    assert sum(r.amount for r in records) == summary["paid_amount"] == 40000
    assert [p["amount"] for p in payment_service.list_payments(order["id"])] == [10000, 25000, 5000]


def test_history_only_on_status_change(db_session, order):
    _pay(order, 10000)
    _pay(order, 10000)
    summary = order_service.get_order_summary(order["id"])

    payment_rows = [h for h in summary["status_histories"] if h["status_type"] == "payment"]
    assert [(h["from_status"], h["to_status"]) for h in payment_rows] == [
        (None, "pending"),
        ("pending", "partial"),
    ]


def test_paid_order_rejects_more_payments(db_session, order):
    _pay(order, 100000)

    with pytest.raises(OrderAlreadyPaid) as exc:
        _pay(order, 1)
    assert exc.value.payload["remaining_amount"] == 0


def test_payment_input_errors(db_session, order):
    with pytest.raises(ValidationError):
        _pay(order, 0)
    with pytest.raises(ValidationError):
        _pay(order, -5)
    with pytest.raises(ValidationError):
        _pay(order, 100, method="bitcoin")

    assert payment_service.list_payments(order["id"]) == []


def test_cancelled_order_rejects_payment(db_session, order):
    order_service.cancel_order(order_id=order["id"], reason="void")

    with pytest.raises(ValidationError):
        _pay(order, 100)


def test_confirm_payment_settles_remaining(db_session, order):
    _pay(order, 20000)

    result = payment_service.confirm_payment(order_id=order["id"], payment_method="credit_card")

    assert result["payment"]["amount"] == 80000
    assert result["payment"]["payment_method"] == "credit_card"
    assert result["order"]["payment_status"] == "paid"


def test_zero_total_order_starts_paid(db_session, store_a):
    free = order_service.create_order(
        store_id=store_a.id,
        items=[{"product_name": "Sample", "quantity": 1, "price": 100}],
        discount_amount=100,
    )

    assert free["grand_total"] == free["paid_amount"] == 0
    assert free["payment_status"] == "paid"
    assert free["paid_at"] is not None
    payment_rows = [h for h in free["status_histories"] if h["status_type"] == "payment"]
    assert [(h["from_status"], h["to_status"]) for h in payment_rows] == [(None, "paid")]

    with pytest.raises(OrderAlreadyPaid):
        payment_service.confirm_payment(order_id=free["id"])
    assert payment_service.list_payments(free["id"]) == []


def test_refund_order(db_session, order):
    _pay(order, 60000)

    with pytest.raises(ValidationError):
        payment_service.refund_order(order_id=order["id"], reason="damaged", amount=70000)

    result = payment_service.refund_order(order_id=order["id"], reason="damaged")

    assert result["payment_status"] == "refunded"
    assert result["refunded_amount"] == 60000
    assert result["refunded_at"] is not None
    assert result["paid_amount"] == 60000
    with pytest.raises(ValidationError):
        _pay(order, 100)


def test_refund_requires_payment_first(db_session, order):
    with pytest.raises(ValidationError):
        payment_service.refund_order(order_id=order["id"], reason="nothing paid")

    assert order_service.get_order_summary(order["id"])["payment_status"] == "pending"
