from datetime import datetime
from decimal import Decimal

import pytest

from wedding_payments import payments
from wedding_payments.database import SessionLocal
from wedding_payments.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ExternalProviderError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from wedding_payments.models import Booking, BookingStatus, Payment, PaymentStatus, Role, Vendor
from tests.helpers import count, fetch, make_booking, make_user, make_vendor


@pytest.mark.parametrize("amount, admin, vendor", [
    ("1000", "100.00", "900.00"),
    ("333.33", "33.33", "300.00"),
    ("0.05", "0.01", "0.04"),
    ("19.99", "2.00", "17.99"),
    ("1234567.89", "123456.79", "1111111.10"),
])
def test_compute_split_sums_to_amount(amount, admin, vendor):
    admin_split, vendor_split = payments.compute_split(Decimal(amount))
    assert admin_split == Decimal(admin)
    assert vendor_split == Decimal(vendor)
    assert admin_split + vendor_split == Decimal(amount)


def _pending(db, marketplace, amount="1000"):
    vendor = db.get(Vendor, marketplace.vendor_id)
    return payments.create_pending(
        db, Decimal(amount), marketplace.client_id, vendor, marketplace.booking_id
    )


def test_create_pending_persists_split(db, marketplace):
    payment = _pending(db, marketplace)

    stored = fetch(Payment, payment.id)
    assert stored.status == PaymentStatus.PENDING
    assert stored.amount == Decimal("1000")
    assert stored.admin_split == Decimal("100")
    assert stored.vendor_split == Decimal("900")
    assert stored.user_id == marketplace.client_id
    assert stored.recipient_id == marketplace.vendor_user_id
    assert stored.transaction_id is None
    assert stored.method == "CHAPA"


@pytest.mark.parametrize("amount", ["0", "-5", "NaN"])
def test_create_pending_rejects_non_positive_amount(db, marketplace, amount):
    with pytest.raises(ValidationError):
        _pending(db, marketplace, amount)
    assert count(Payment) == 0


def test_create_pending_unknown_booking(db, marketplace):
    vendor = db.get(Vendor, marketplace.vendor_id)
    with pytest.raises(NotFoundError):
        payments.create_pending(db, Decimal("10"), marketplace.client_id, vendor, "missing")


def test_create_pending_rejects_foreign_booking(db, marketplace):
    vendor = db.get(Vendor, marketplace.vendor_id)
    with pytest.raises(AuthorizationError):
        payments.create_pending(
            db, Decimal("10"), marketplace.other_client_id, vendor, marketplace.booking_id
        )
    assert count(Payment) == 0


def test_create_pending_rejects_vendor_mismatch(db, marketplace):
    other_user = make_user(db, Role.VENDOR, "second-vendor@example.com")
    other_vendor_id = make_vendor(db, other_user, subaccount_id="sub_vendor_2")
    other_vendor = db.get(Vendor, other_vendor_id)

    with pytest.raises(AuthorizationError):
        payments.create_pending(
            db, Decimal("10"), marketplace.client_id, other_vendor, marketplace.booking_id
        )


def test_create_pending_requires_vendor_subaccount(db, marketplace):
    other_user = make_user(db, Role.VENDOR, "unprovisioned@example.com")
    vendor_id = make_vendor(db, other_user, subaccount_id=None)
    booking_id = make_booking(db, marketplace.client_id, vendor_id)

    with pytest.raises(ConfigurationError):
        payments.create_pending(
            db, Decimal("10"), marketplace.client_id, db.get(Vendor, vendor_id), booking_id
        )


def test_create_pending_rejects_confirmed_booking(db, marketplace):
    booking = db.get(Booking, marketplace.booking_id)
    booking.status = BookingStatus.CONFIRMED
    db.commit()

    with pytest.raises(ValidationError):
        _pending(db, marketplace)


def test_retry_creates_independent_pending_payment(db, marketplace):
    first = _pending(db, marketplace)
    second = _pending(db, marketplace)

    assert first.id != second.id
    assert count(Payment) == 2


def test_attach_external_reference(db, marketplace):
    payment = _pending(db, marketplace)
    payments.attach_external_reference(db, payment.id, "payment-abc")

    assert fetch(Payment, payment.id).transaction_id == "payment-abc"
    assert payments.get_payment(db, tx_ref="payment-abc").id == payment.id


def test_attach_external_reference_unknown_payment(db):
    with pytest.raises(NotFoundError):
        payments.attach_external_reference(db, "missing", "payment-abc")


def test_transition_is_idempotent(db, marketplace):
    payment = _pending(db, marketplace)

    assert payments.transition_status(db, payment, PaymentStatus.COMPLETED) is True
    db.commit()
    assert payments.transition_status(db, payment, PaymentStatus.COMPLETED) is False
    db.commit()

    assert fetch(Payment, payment.id).status == PaymentStatus.COMPLETED


def test_transition_uses_current_row_not_cached_object(db, marketplace):
    payment = _pending(db, marketplace)

    # Another request settles the payment behind this session's back
    other = SessionLocal()
    other.query(Payment).filter_by(id=payment.id).update({Payment.status: PaymentStatus.FAILED})
    other.commit()
    other.close()
    assert payment.status == PaymentStatus.PENDING

    with pytest.raises(InvalidTransitionError):
        payments.transition_status(db, payment, PaymentStatus.COMPLETED)


@pytest.mark.parametrize("first, second", [
    (PaymentStatus.COMPLETED, PaymentStatus.FAILED),
    (PaymentStatus.FAILED, PaymentStatus.COMPLETED),
    (PaymentStatus.COMPLETED, PaymentStatus.PENDING),
])
def test_terminal_payment_rejects_other_status(db, marketplace, first, second):
    payment = _pending(db, marketplace)
    payments.transition_status(db, payment, first)
    db.commit()

    with pytest.raises(InvalidTransitionError):
        payments.transition_status(db, payment, second)
    assert fetch(Payment, payment.id).status == first


def _completed(db, marketplace, tx_ref="payment-refund-1"):
    payment = _pending(db, marketplace)
    payments.attach_external_reference(db, payment.id, tx_ref)
    payments.transition_status(db, payment, PaymentStatus.COMPLETED)
    db.commit()
    return payment


def test_refund_requires_override(db, marketplace, mocker):
    chapa_refund = mocker.patch("wedding_payments.chapa_service.refund_transaction")
    payment = _completed(db, marketplace)

    with pytest.raises(InvalidTransitionError):
        payments.transition_status(db, payment, PaymentStatus.REFUNDED)

    refunded = payments.refund_payment(db, payment.id, reason="Event cancelled")
    assert refunded.status == PaymentStatus.REFUNDED
    chapa_refund.assert_called_once_with("payment-refund-1", Decimal("1000.00"), "Event cancelled")

    # Refunding again is a no-op and does not reach Chapa
    assert payments.refund_payment(db, payment.id).status == PaymentStatus.REFUNDED
    chapa_refund.assert_called_once()


def test_refund_rejected_by_processor_keeps_payment_completed(db, marketplace, mocker):
    mocker.patch(
        "wedding_payments.chapa_service.refund_transaction",
        side_effect=ExternalProviderError("Chapa Error: Refund window has closed"),
    )
    payment = _completed(db, marketplace)

    with pytest.raises(ExternalProviderError):
        payments.refund_payment(db, payment.id)
    assert fetch(Payment, payment.id).status == PaymentStatus.COMPLETED


def test_refund_rejects_pending_payment(db, marketplace, mocker):
    chapa_refund = mocker.patch("wedding_payments.chapa_service.refund_transaction")
    payment = _pending(db, marketplace)
    with pytest.raises(InvalidTransitionError):
        payments.refund_payment(db, payment.id)
    assert fetch(Payment, payment.id).status == PaymentStatus.PENDING
    chapa_refund.assert_not_called()


def test_confirm_booking_only_once(db, marketplace):
    assert payments.confirm_booking(db, marketplace.booking_id) is True
    db.commit()
    assert payments.confirm_booking(db, marketplace.booking_id) is False
    db.commit()
    assert fetch(Booking, marketplace.booking_id).status == BookingStatus.CONFIRMED


def test_list_payments_filters_and_paginates(db, marketplace):
    for _ in range(3):
        _pending(db, marketplace)
    completed = _pending(db, marketplace)
    payments.transition_status(db, completed, PaymentStatus.COMPLETED)
    db.commit()

    page = payments.list_payments(db, user_id=marketplace.client_id, page=1, limit=2)
    assert page["total"] == 4
    assert page["total_pages"] == 2
    assert len(page["items"]) == 2

    done = payments.list_payments(db, user_id=marketplace.client_id, status=PaymentStatus.COMPLETED)
    assert [p.id for p in done["items"]] == [completed.id]

    assert payments.list_payments(db, user_id=marketplace.other_client_id)["total"] == 0


def test_list_payments_amount_range_and_offset(db, marketplace):
    for amount in ("100", "250", "500", "900"):
        _pending(db, marketplace, amount=amount)

    mid = payments.list_payments(db, min_amount=Decimal("200"), max_amount=Decimal("600"))
    assert sorted(p.amount for p in mid["items"]) == [Decimal("250.00"), Decimal("500.00")]

    window = payments.list_payments(db, offset=1, limit=2)
    assert window["total"] == 4
    assert len(window["items"]) == 2

    with pytest.raises(ValidationError):
        payments.list_payments(db, min_amount=Decimal("600"), max_amount=Decimal("200"))


def test_list_payments_newest_first(db, marketplace):
    older = _pending(db, marketplace, amount="100")
    newer = _pending(db, marketplace, amount="200")
    db.query(Payment).filter(Payment.id == older.id).update(
        {Payment.created_at: datetime(2026, 1, 1, 9, 0)}, synchronize_session=False
    )
    db.query(Payment).filter(Payment.id == newer.id).update(
        {Payment.created_at: datetime(2026, 1, 2, 9, 0)}, synchronize_session=False
    )
    db.commit()

    assert [p.id for p in payments.list_payments(db)["items"]] == [newer.id, older.id]


def test_parse_status():
    assert payments.parse_status("completed") == PaymentStatus.COMPLETED
    assert payments.parse_status(None) is None
    with pytest.raises(ValidationError):
        payments.parse_status("paid")
