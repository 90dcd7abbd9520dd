import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from wedding_payments import chapa_service, payments
from wedding_payments.config import load_settings
from wedding_payments.exceptions import AuthenticationError, AuthorizationError, ValidationError
from wedding_payments.models import Payment, PaymentStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "success": PaymentStatus.COMPLETED,
    "fail": PaymentStatus.FAILED,
    "failed": PaymentStatus.FAILED,
    "pending": PaymentStatus.PENDING,
}


def map_processor_status(value: Optional[str]) -> PaymentStatus:
    """Translate Chapa's vocabulary; anything unrecognised fails closed."""
    if not isinstance(value, str):
        return PaymentStatus.FAILED
    return STATUS_MAP.get(value.strip().lower(), PaymentStatus.FAILED)


def verify_signature(signature: Optional[str], raw_body: bytes, secret: Optional[str]) -> None:
    if not secret:
        logger.error("Webhook secret is not configured; rejecting webhook")
        raise AuthenticationError("Webhook secret is not configured")
    if not signature:
        raise AuthenticationError("Missing webhook signature")
    expected = hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()
    # Bytes on both sides: compare_digest rejects non-ASCII str with TypeError
    if not hmac.compare_digest(signature.strip().lower().encode("utf-8"), expected.encode()):
        raise AuthenticationError("Invalid webhook signature")


def apply_processor_status(db: Session, payment: Payment, processor_status: Optional[str]) -> PaymentStatus:
    """
    Apply a processor-reported status to the payment and, on success, to its
    booking. Both updates are conditional, so repeated or racing deliveries
    confirm the booking at most once.
    """
    new_status = map_processor_status(processor_status)
    if new_status == PaymentStatus.PENDING:
        logger.info("Payment %s still pending at processor", payment.id)
        return payment.status

    try:
        payments.transition_status(db, payment, new_status)
        if payment.status == PaymentStatus.COMPLETED:
            payments.confirm_booking(db, payment.booking_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return payment.status


@dataclass
class WebhookOutcome:
    payment_id: str
    tx_ref: str
    status: PaymentStatus


def _webhook_status(body: dict) -> Optional[str]:
    status = body.get("status")
    if status:
        return status
    # e.g. "charge.success"
    event = body.get("event")
    if isinstance(event, str) and "." in event:
        return event.rsplit(".", 1)[1]
    return None


def handle_webhook(db: Session, signature: Optional[str], raw_body: bytes) -> WebhookOutcome:
    verify_signature(signature, raw_body, load_settings().webhook_secret)

    try:
        body = json.loads(raw_body or b"")
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Webhook body must be a JSON object")

    tx_ref = body.get("tx_ref") or body.get("trx_ref")
    if not tx_ref:
        raise ValidationError("Webhook is missing the transaction reference", field="tx_ref")

    payment = payments.get_payment(db, tx_ref=tx_ref)
    status = apply_processor_status(db, payment, _webhook_status(body))
    logger.info("Webhook for %s resolved payment %s to %s", tx_ref, payment.id, status.value)
    return WebhookOutcome(payment_id=payment.id, tx_ref=tx_ref, status=status)


def verify(db: Session, payment_id: str, caller_id: str, tx_ref: Optional[str] = None) -> PaymentStatus:
    payment = payments.get_payment(db, payment_id=payment_id)
    if payment.user_id != caller_id:
        logger.warning("User %s tried to verify payment %s", caller_id, payment_id)
        raise AuthorizationError("You are not allowed to verify this payment")
    if tx_ref and payment.transaction_id and tx_ref != payment.transaction_id:
        raise ValidationError("Transaction reference does not match this payment", field="txRef")

    if payment.status in TERMINAL_STATUSES:
        return payment.status
    if not payment.transaction_id:
        raise ValidationError("Payment has no transaction reference yet", field="txRef")

    # Raises ExternalProviderError before any local mutation
    processor_status = chapa_service.verify_transaction(payment.transaction_id)
    return apply_processor_status(db, payment, processor_status)
