import hashlib
import hmac

from wedding_payments.database import SessionLocal
from wedding_payments.models import Booking, User, Vendor, VendorStatus

WEBHOOK_SECRET = "whsec_test"
CHECKOUT_URL = "https://checkout.chapa.co/checkout/payment/test-session"


def fetch(model, pk):
    """Load a fresh copy of a row, bypassing any session cache."""
    session = SessionLocal()
    try:
        return session.get(model, pk)
    finally:
        session.close()


def count(model):
    session = SessionLocal()
    try:
        return session.query(model).count()
    finally:
        session.close()


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def make_user(db, role, email, first_name="Test", last_name="User"):
    user = User(email=email, first_name=first_name, last_name=last_name, role=role)
    db.add(user)
    db.commit()
    return user.id


def make_vendor(db, user_id, subaccount_id="sub_vendor_1", account_number="1000123456789",
                status=VendorStatus.APPROVED):
    vendor = Vendor(
        user_id=user_id,
        business_name="Blooms & Co",
        account_number=account_number,
        status=status,
        chapa_subaccount_id=subaccount_id,
    )
    db.add(vendor)
    db.commit()
    return vendor.id


def make_booking(db, client_id, vendor_id):
    booking = Booking(client_id=client_id, vendor_id=vendor_id, service_name="Wedding flowers")
    db.add(booking)
    db.commit()
    return booking.id
