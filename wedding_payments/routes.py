from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, ConfigDict, Field

from wedding_payments import checkout, payments, reconciler, subaccounts
from wedding_payments.auth import Caller, require_role
from wedding_payments.database import session_scope
from wedding_payments.exceptions import NotFoundError, ValidationError
from wedding_payments.models import PaymentStatus, Role, Vendor

router = APIRouter(prefix="/payment", tags=["payment"])
vendor_router = APIRouter(prefix="/vendor", tags=["vendor"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
planner_router = APIRouter(prefix="/eventplanner", tags=["eventplanner"])


class InitiateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal
    vendor_id: str = Field(alias="vendorId")
    booking_id: str = Field(alias="bookingId")


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(alias="paymentId")
    tx_ref: Optional[str] = Field(default=None, alias="txRef")


class RefundRequest(BaseModel):
    reason: Optional[str] = None


@router.post("/initiate")
def initiate_payment(
    request: InitiateRequest,
    caller: Caller = Depends(require_role(Role.CLIENT)),
):
    with session_scope() as db:
        session = checkout.initiate(
            db, caller.id, request.vendor_id, request.booking_id, request.amount
        )

    return {
        "checkoutUrl": session.checkout_url,
        "paymentId": session.payment_id,
        "txRef": session.tx_ref,
    }


@router.post("/verify")
def verify_payment(
    request: VerifyRequest,
    caller: Caller = Depends(require_role(Role.CLIENT)),
):
    with session_scope() as db:
        status = reconciler.verify(db, request.payment_id, caller.id, request.tx_ref)

    return {"paymentId": request.payment_id, "status": status.value}


@router.get("")
def get_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    caller: Caller = Depends(require_role(Role.CLIENT)),
):
    with session_scope() as db:
        result = payments.list_payments(
            db,
            user_id=caller.id,
            status=payments.parse_status(status),
            page=page,
            limit=limit,
        )
        data = [payments.serialize(p) for p in result["items"]]

    return {
        "data": data,
        "pagination": {
            "page": result["page"],
            "limit": result["limit"],
            "total": result["total"],
            "totalPages": result["total_pages"],
        },
    }


def _parse_date(value: Optional[str], field: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date format for {field}", field=field)


@vendor_router.get("/payments")
def get_vendor_payments(
    status: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    caller: Caller = Depends(require_role(Role.VENDOR)),
):
    with session_scope() as db:
        vendor = db.query(Vendor).filter_by(user_id=caller.id).first()
        if not vendor:
            raise NotFoundError("vendor profile")
        vendor_id = vendor.id

        result = payments.list_payments(
            db,
            vendor_id=vendor_id,
            status=payments.parse_status(status),
            start=_parse_date(start_date, "startDate"),
            end=_parse_date(end_date, "endDate"),
        )
        items = result["items"]
        received = [
            {
                "paymentId": p.id,
                "eventId": p.booking_id,
                "amount": p.vendor_split,
                "currency": p.currency,
                "status": p.status.value.lower(),
                "receivedAt": p.updated_at.isoformat() if p.updated_at else None,
            }
            for p in items if p.status == PaymentStatus.COMPLETED
        ]
        pending = [
            {
                "paymentId": p.id,
                "eventId": p.booking_id,
                "amount": p.vendor_split,
                "currency": p.currency,
                "status": p.status.value.lower(),
            }
            for p in items if p.status == PaymentStatus.PENDING
        ]

    return {
        "success": True,
        "data": {
            "vendorId": vendor_id,
            "receivedPayments": received,
            "pendingPayments": pending,
            "totalPayments": result["total"],
        },
    }


def _back_office_payments(
    response: Response,
    status: Optional[str],
    amount_gte: Optional[Decimal],
    amount_lte: Optional[Decimal],
    start: int,
    end: int,
) -> list:
    """Range-paged listing across all payments; the total goes in X-Total-Count."""
    if end <= start:
        raise ValidationError("_end must be greater than _start", field="_end")

    with session_scope() as db:
        result = payments.list_payments(
            db,
            status=payments.parse_status(status),
            min_amount=amount_gte,
            max_amount=amount_lte,
            offset=start,
            limit=end - start,
        )
        data = [
            {
                **payments.serialize(p),
                "userName": f"{p.payer.first_name or ''} {p.payer.last_name or ''}".strip(),
                "eventName": (p.booking.service_name if p.booking else None) or "N/A",
            }
            for p in result["items"]
        ]

    response.headers["X-Total-Count"] = str(result["total"])
    response.headers["Access-Control-Expose-Headers"] = "X-Total-Count"
    return data


@admin_router.get("/payments")
def list_all_payments(
    response: Response,
    status: Optional[str] = None,
    amount_gte: Optional[Decimal] = None,
    amount_lte: Optional[Decimal] = None,
    start: int = Query(0, ge=0, alias="_start"),
    end: int = Query(10, ge=1, alias="_end"),
    caller: Caller = Depends(require_role(Role.ADMIN)),
):
    return _back_office_payments(response, status, amount_gte, amount_lte, start, end)


@planner_router.get("/payments")
def list_planner_payments(
    response: Response,
    status: Optional[str] = None,
    amount_gte: Optional[Decimal] = None,
    amount_lte: Optional[Decimal] = None,
    start: int = Query(0, ge=0, alias="_start"),
    end: int = Query(10, ge=1, alias="_end"),
    caller: Caller = Depends(require_role(Role.EVENT_PLANNER)),
):
    return _back_office_payments(response, status, amount_gte, amount_lte, start, end)


@admin_router.post("/vendors/{vendor_id}/approve")
def approve_vendor(vendor_id: str, caller: Caller = Depends(require_role(Role.ADMIN))):
    with session_scope() as db:
        vendor = subaccounts.approve_vendor(db, vendor_id)
        body = {
            "message": "Vendor approved successfully",
            "vendor": {
                "id": vendor.id,
                "businessName": vendor.business_name,
                "status": vendor.status.value,
                "chapaSubaccountId": vendor.chapa_subaccount_id,
            },
        }
    return body


@admin_router.post("/subaccount")
def provision_admin_subaccount(caller: Caller = Depends(require_role(Role.ADMIN))):
    with session_scope() as db:
        account_id = subaccounts.ensure_admin_subaccount(db)
    return {"accountId": account_id}


@admin_router.post("/payments/{payment_id}/refund")
def refund(
    payment_id: str,
    request: Optional[RefundRequest] = None,
    caller: Caller = Depends(require_role(Role.ADMIN)),
):
    with session_scope() as db:
        payment = payments.refund_payment(db, payment_id, request.reason if request else None)
        body = {"paymentId": payment.id, "status": payment.status.value}
    return body
