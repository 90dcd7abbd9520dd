import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from wedding_payments import chapa_service, payments, subaccounts
from wedding_payments.config import load_settings
from wedding_payments.exceptions import ConfigurationError, ExternalProviderError, NotFoundError
from wedding_payments.models import PaymentStatus, User, Vendor

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    payment_id: str
    tx_ref: str
    checkout_url: str


def make_tx_ref(payment_id: str) -> str:
    return f"payment-{payment_id}-{uuid.uuid4()}"


def split_instruction(admin_account_id: str, vendor_account_id: str) -> list:
    return [
        {"id": admin_account_id, "split_type": "percentage", "split_value": float(subaccounts.ADMIN_SPLIT)},
        {"id": vendor_account_id, "split_type": "percentage", "split_value": float(subaccounts.VENDOR_SPLIT)},
    ]


def _mark_failed(db: Session, payment) -> None:
    db.rollback()
    payments.transition_status(db, payment, PaymentStatus.FAILED)
    db.commit()


def initiate(
    db: Session,
    client_id: str,
    vendor_id: str,
    booking_id: str,
    amount: Decimal,
) -> CheckoutSession:
    client = db.get(User, client_id)
    if not client:
        raise NotFoundError("client", client_id)
    vendor = db.get(Vendor, vendor_id)
    if not vendor:
        raise NotFoundError("vendor", vendor_id)

    admin_account = subaccounts.get_admin_subaccount(db)
    if not vendor.chapa_subaccount_id or not admin_account:
        logger.error(
            "Payment accounts not configured: vendor=%s vendor_subaccount=%s admin=%s",
            vendor.id, vendor.chapa_subaccount_id, admin_account is not None,
        )
        raise ConfigurationError(
            "Payment accounts not configured",
            context={"vendor_id": vendor.id, "admin_configured": admin_account is not None},
        )

    payment = payments.create_pending(db, amount, client.id, vendor, booking_id)
    tx_ref = make_tx_ref(payment.id)
    # Stored before the call so an abandoned or timed-out session stays traceable
    payments.attach_external_reference(db, payment.id, tx_ref)
    settings = load_settings()

    try:
        checkout_url = chapa_service.initialize_transaction(
            amount=payment.amount,
            currency=payment.currency,
            email=client.email,
            first_name=client.first_name,
            last_name=client.last_name,
            tx_ref=tx_ref,
            callback_url=settings.callback_url,
            return_url=settings.return_url,
            subaccounts=split_instruction(admin_account.account_id, vendor.chapa_subaccount_id),
        )
    except ExternalProviderError as exc:
        _mark_failed(db, payment)
        logger.error(
            "Chapa payment initiation failed for payment %s: %s %s",
            payment.id, exc.message, exc.context,
        )
        raise ExternalProviderError(
            "Payment initiation failed",
            context={"payment_id": payment.id, **exc.context},
        ) from exc
    except Exception:
        _mark_failed(db, payment)
        logger.exception("Unexpected error initiating payment %s", payment.id)
        raise

    logger.info("Checkout started for payment %s (%s)", payment.id, tx_ref)
    return CheckoutSession(payment_id=payment.id, tx_ref=tx_ref, checkout_url=checkout_url)
