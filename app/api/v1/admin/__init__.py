"""Admin API."""
import uuid
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from app.core.dependencies import CurrentUser, get_current_admin
from app.api.v1.payments import get_payment_service
from app.services.payment_service import PaymentService

router = APIRouter()


class AdminPaymentResponse(BaseModel):
    """Платеж в списке админки."""

    id: uuid.UUID
    amount: Decimal
    phoneNumber: str
    transactionId: str | None = None
    mpesaReceiptNumber: str | None = None
    status: str
    createdAt: datetime
    orderId: uuid.UUID
    orderStatus: str | None = None


@router.get("/payments", response_model=list[AdminPaymentResponse])
async def list_payments(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: CurrentUser = Depends(get_current_admin),
    service: PaymentService = Depends(get_payment_service),
):
    """Все платежи, от новых к старым."""
    payments = await service.list_payments(limit=limit, offset=offset)
    return [
        AdminPaymentResponse(
            id=p.id,
            amount=p.amount,
            phoneNumber=p.phone_number,
            transactionId=p.transaction_id,
            mpesaReceiptNumber=p.mpesa_receipt_number,
            status=p.status,
            createdAt=p.created_at,
            orderId=p.order_id,
            orderStatus=p.order.status if p.order else None,
        )
        for p in payments
    ]
