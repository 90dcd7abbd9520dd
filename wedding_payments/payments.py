import logging
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from wedding_payments import chapa_service
from wedding_payments.config import load_settings
from wedding_payments.exceptions import (
    AuthorizationError,
    ConfigurationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from wedding_payments.models import (
    Booking,
    BookingStatus,
    Payment,
    PaymentStatus,
    TERMINAL_STATUSES,
    Vendor,
)

logger = logging.getLogger(__name__)

ADMIN_SHARE = Decimal("0.10")
CENT = Decimal("0.01")


def compute_split(amount: Decimal) -> Tuple[Decimal, Decimal]:
    """Admin gets 10% rounded to the cent; the vendor gets the exact remainder."""
    amount = Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)
    admin = (amount * ADMIN_SHARE).quantize(CENT, rounding=ROUND_HALF_UP)
    return admin, amount - admin


def create_pending(
    db: Session,
    amount: Decimal,
    client_id: str,
    vendor: Vendor,
    booking_id: str,
) -> Payment:
    try:
        amount = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    except ArithmeticError:
        raise ValidationError("Amount must be a number", field="amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount")

    if not vendor.chapa_subaccount_id:
        raise ConfigurationError(
            "Payment accounts not configured", context={"vendor_id": vendor.id}
        )

    booking = db.get(Booking, booking_id)
    if not booking:
        raise NotFoundError("booking", booking_id)
    if booking.client_id != client_id:
        raise AuthorizationError("Booking does not belong to this client")
    if booking.vendor_id != vendor.id:
        raise AuthorizationError("Booking is not for this vendor")
    if booking.status != BookingStatus.PENDING:
        raise ValidationError(
            f"Booking is {booking.status.value.lower()} and cannot be paid", field="bookingId"
        )

    admin_split, vendor_split = compute_split(amount)
    payment = Payment(
        amount=amount,
        currency=load_settings().currency,
        status=PaymentStatus.PENDING,
        method="CHAPA",
        admin_split=admin_split,
        vendor_split=vendor_split,
        user_id=client_id,
        recipient_id=vendor.user_id,
        vendor_id=vendor.id,
        booking_id=booking.id,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    logger.info(
        "Payment %s created for booking %s: amount=%s admin=%s vendor=%s",
        payment.id, booking.id, amount, admin_split, vendor_split,
    )
    return payment


def get_payment(db: Session, payment_id: Optional[str] = None, tx_ref: Optional[str] = None) -> Payment:
    if payment_id:
        payment = db.get(Payment, payment_id)
    elif tx_ref:
        payment = db.query(Payment).filter_by(transaction_id=tx_ref).first()
    else:
        raise ValidationError("A payment id or transaction reference is required")
    if not payment:
        raise NotFoundError("payment", payment_id or tx_ref)
    return payment


def attach_external_reference(db: Session, payment_id: str, tx_ref: str) -> Payment:
    payment = get_payment(db, payment_id=payment_id)
    payment.transaction_id = tx_ref
    db.commit()
    db.refresh(payment)
    return payment


def transition_status(
    db: Session,
    payment: Payment,
    new_status: PaymentStatus,
    override: bool = False,
) -> bool:
    """
    Move a payment to ``new_status`` with a single conditional UPDATE.

    Returns True if this call changed the row, False if the payment was
    already in ``new_status``. Leaving a terminal status is only possible
    with ``override`` (COMPLETED -> REFUNDED). The caller commits.
    """
    if new_status == PaymentStatus.REFUNDED:
        if not override:
            raise InvalidTransitionError(
                "Refunds require an administrative override",
                context={"payment_id": payment.id},
            )
        expected = PaymentStatus.COMPLETED
    else:
        expected = PaymentStatus.PENDING

    if new_status == PaymentStatus.PENDING:
        db.refresh(payment)
        if payment.status == PaymentStatus.PENDING:
            return False
        raise InvalidTransitionError(
            f"Payment is already {payment.status.value}",
            context={"payment_id": payment.id, "requested": new_status.value},
        )

    updated = (
        db.query(Payment)
        .filter(Payment.id == payment.id, Payment.status == expected)
        .update({Payment.status: new_status}, synchronize_session=False)
    )
    db.refresh(payment)
    if updated:
        logger.info("Payment %s: %s -> %s", payment.id, expected.value, new_status.value)
        return True

    if payment.status == new_status:
        logger.info("Payment %s already %s", payment.id, new_status.value)
        return False

    raise InvalidTransitionError(
        f"Cannot change payment from {payment.status.value} to {new_status.value}",
        context={
            "payment_id": payment.id,
            "current": payment.status.value,
            "requested": new_status.value,
        },
    )


def confirm_booking(db: Session, booking_id: str) -> bool:
    """PENDING -> CONFIRMED, guarded on the current status. Caller commits."""
    updated = (
        db.query(Booking)
        .filter(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
        .update({Booking.status: BookingStatus.CONFIRMED}, synchronize_session=False)
    )
    if updated:
        logger.info("Booking %s confirmed", booking_id)
    return bool(updated)


def refund_payment(db: Session, payment_id: str, reason: Optional[str] = None) -> Payment:
    """
    Refund a completed payment through Chapa, then record it as REFUNDED.
    A payment that is already REFUNDED is returned without another processor call.
    """
    payment = get_payment(db, payment_id=payment_id)
    if payment.status == PaymentStatus.REFUNDED:
        return payment
    if payment.status != PaymentStatus.COMPLETED:
        raise InvalidTransitionError(
            f"Only completed payments can be refunded (payment is {payment.status.value})",
            context={"payment_id": payment.id},
        )
    if not payment.transaction_id:
        raise InvalidTransitionError(
            "Payment has no transaction reference to refund", context={"payment_id": payment.id}
        )

    # Raises ExternalProviderError before any local mutation
    chapa_service.refund_transaction(payment.transaction_id, payment.amount, reason)
    logger.info("Chapa refunded %s for payment %s", payment.transaction_id, payment.id)
    transition_status(db, payment, PaymentStatus.REFUNDED, override=True)
    db.commit()
    db.refresh(payment)
    return payment


def parse_status(value: Optional[str]) -> Optional[PaymentStatus]:
    if not value:
        return None
    try:
        return PaymentStatus(value.upper())
    except ValueError:
        raise ValidationError(
            "Invalid status. Must be PENDING, COMPLETED, FAILED, or REFUNDED", field="status"
        )


def list_payments(
    db: Session,
    user_id: Optional[str] = None,
    vendor_id: Optional[str] = None,
    status: Optional[PaymentStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: Optional[int] = None,
    limit: Optional[int] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    offset: Optional[int] = None,
) -> dict:
    """
    Filter payments newest first. ``offset`` takes precedence over ``page``
    when both are given; without ``limit`` every match is returned.
    """
    query = db.query(Payment)
    if user_id:
        query = query.filter(Payment.user_id == user_id)
    if vendor_id:
        query = query.filter(Payment.vendor_id == vendor_id)
    if status:
        query = query.filter(Payment.status == status)
    if start and end:
        if start >= end:
            raise ValidationError("startDate must be before endDate")
        query = query.filter(Payment.created_at >= start, Payment.created_at <= end)
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise ValidationError("amount_gte must not exceed amount_lte", field="amount_gte")
    if min_amount is not None:
        query = query.filter(Payment.amount >= min_amount)
    if max_amount is not None:
        query = query.filter(Payment.amount <= max_amount)

    total = query.count()
    query = query.order_by(Payment.created_at.desc(), Payment.id)
    if limit:
        if offset is None:
            offset = ((page or 1) - 1) * limit
        query = query.offset(offset).limit(limit)

    return {
        "items": query.all(),
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if limit else 1,
    }


def serialize(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status.value,
        "method": payment.method,
        "txRef": payment.transaction_id,
        "adminSplit": payment.admin_split,
        "vendorSplit": payment.vendor_split,
        "bookingId": payment.booking_id,
        "vendorId": payment.vendor_id,
        "createdAt": payment.created_at.isoformat() if payment.created_at else None,
    }
