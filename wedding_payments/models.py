import enum
import uuid

from sqlalchemy import Column, String, Numeric, DateTime, Enum, ForeignKey, CheckConstraint, func
from sqlalchemy.orm import relationship
from wedding_payments.database import Base


def _uuid():
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    CLIENT = "CLIENT"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"
    EVENT_PLANNER = "EVENT_PLANNER"


class VendorStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    SUSPENDED = "SUSPENDED"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


TERMINAL_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.REFUNDED}


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String, unique=True, nullable=False)
    first_name = Column(String)
    last_name = Column(String)
    role = Column(Enum(Role), nullable=False)


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)
    business_name = Column(String, nullable=False)
    account_number = Column(String)
    status = Column(Enum(VendorStatus), nullable=False, default=VendorStatus.PENDING)
    # Unique so two racing approvals cannot attach different processor accounts
    chapa_subaccount_id = Column(String, unique=True, nullable=True)


class ChapaSubaccount(Base):
    __tablename__ = "chapa_subaccounts"

    id = Column(String(36), primary_key=True, default=_uuid)
    account_id = Column(String, unique=True, nullable=False)
    type = Column(String, unique=True, nullable=False)  # ADMIN
    created_at = Column(DateTime, server_default=func.now())


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)
    client_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    service_name = Column(String)
    event_date = Column(DateTime)
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.PENDING)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payments_amount_positive"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="ETB")
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True)
    method = Column(String, nullable=False, default="CHAPA")
    transaction_id = Column(String, unique=True, nullable=True, index=True)  # Chapa tx_ref
    admin_split = Column(Numeric(12, 2), nullable=False)
    vendor_split = Column(Numeric(12, 2), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    recipient_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    payer = relationship("User", foreign_keys=[user_id])
    booking = relationship("Booking")
