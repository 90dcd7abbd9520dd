import logging
import re
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wedding_payments import chapa_service
from wedding_payments.config import load_settings
from wedding_payments.exceptions import NotFoundError, ValidationError
from wedding_payments.models import ChapaSubaccount, Vendor, VendorStatus

logger = logging.getLogger(__name__)

ADMIN_TYPE = "ADMIN"
ADMIN_SPLIT = Decimal("0.1")
VENDOR_SPLIT = Decimal("0.9")

# Commercial Bank of Ethiopia
CBE_BANK_CODE = "946"
CBE_ACCOUNT_LENGTH = 13
_DIGITS = re.compile(r"^\d+$")


def get_admin_subaccount(db: Session):
    return db.query(ChapaSubaccount).filter_by(type=ADMIN_TYPE).first()


def ensure_admin_subaccount(db: Session) -> str:
    existing = get_admin_subaccount(db)
    if existing:
        logger.info("Admin subaccount already exists: %s", existing.account_id)
        return existing.account_id

    settings = load_settings()
    account_id = chapa_service.create_subaccount(
        business_name=settings.admin_business_name,
        account_name=settings.admin_account_name,
        bank_code=settings.admin_bank_code,
        account_number=settings.admin_account_number,
        split_value=ADMIN_SPLIT,
    )

    db.add(ChapaSubaccount(account_id=account_id, type=ADMIN_TYPE))
    try:
        db.commit()
    except IntegrityError:
        # Another process created the admin row first; keep theirs
        db.rollback()
        winner = get_admin_subaccount(db)
        logger.warning(
            "Admin subaccount %s discarded, %s was created concurrently",
            account_id, winner.account_id,
        )
        return winner.account_id

    logger.info("Admin subaccount created successfully: %s", account_id)
    return account_id


def validate_account_number(account_number) -> str:
    value = str(account_number or "").strip()
    if len(value) != CBE_ACCOUNT_LENGTH or not _DIGITS.match(value):
        raise ValidationError(
            f"Invalid CBE account number. Must be {CBE_ACCOUNT_LENGTH} digits.",
            field="account_number",
        )
    return value


def ensure_vendor_subaccount(db: Session, vendor_id: str) -> str:
    vendor = db.get(Vendor, vendor_id)
    if not vendor:
        raise NotFoundError("vendor", vendor_id)
    if vendor.chapa_subaccount_id:
        return vendor.chapa_subaccount_id

    account_number = validate_account_number(vendor.account_number)
    logger.info(
        "Creating Chapa subaccount for vendor %s (%s)", vendor.id, vendor.business_name
    )
    account_id = chapa_service.create_subaccount(
        business_name=vendor.business_name,
        account_name=vendor.business_name,
        bank_code=CBE_BANK_CODE,
        account_number=account_number,
        split_value=VENDOR_SPLIT,
    )

    updated = (
        db.query(Vendor)
        .filter(Vendor.id == vendor_id, Vendor.chapa_subaccount_id.is_(None))
        .update({Vendor.chapa_subaccount_id: account_id}, synchronize_session=False)
    )
    db.commit()
    db.refresh(vendor)
    if not updated:
        logger.warning(
            "Vendor %s already had subaccount %s, discarding %s",
            vendor_id, vendor.chapa_subaccount_id, account_id,
        )
    return vendor.chapa_subaccount_id


def approve_vendor(db: Session, vendor_id: str) -> Vendor:
    vendor = db.get(Vendor, vendor_id)
    if not vendor:
        raise NotFoundError("vendor", vendor_id)
    if vendor.status == VendorStatus.APPROVED:
        raise ValidationError("Vendor is already approved")

    # Provision first: a failure here must leave the vendor unapproved
    ensure_vendor_subaccount(db, vendor_id)

    vendor.status = VendorStatus.APPROVED
    db.commit()
    db.refresh(vendor)
    logger.info("Vendor %s approved", vendor_id)
    return vendor
