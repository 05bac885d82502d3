"""Payments API."""
import uuid
import logging
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import PaymentConfig
from app.core.dependencies import CurrentUser, get_current_user, get_payment_config
from app.core.exceptions import PaymentError
from app.core.payment_rules import derive_order_payment_state
from app.database import get_db
from app.models.payment import Payment
from app.services.lipana_client import LipanaClient
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter()


class InitiatePaymentRequest(BaseModel):
    """Запрос на оплату заказа."""

    orderId: uuid.UUID
    phone: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)


class InitiatePaymentData(BaseModel):
    paymentId: uuid.UUID
    transactionId: str | None = None
    checkoutRequestID: str | None = None


class InitiatePaymentResponse(BaseModel):
    success: bool = True
    message: str
    data: InitiatePaymentData


class PaymentStatusResponse(BaseModel):
    """Состояние одной попытки оплаты."""

    id: uuid.UUID
    orderId: uuid.UUID
    amount: Decimal
    phoneNumber: str
    transactionId: str | None = None
    mpesaReceiptNumber: str | None = None
    status: str
    createdAt: datetime

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentStatusResponse":
        return cls(
            id=payment.id,
            orderId=payment.order_id,
            amount=payment.amount,
            phoneNumber=payment.phone_number,
            transactionId=payment.transaction_id,
            mpesaReceiptNumber=payment.mpesa_receipt_number,
            status=payment.status,
            createdAt=payment.created_at,
        )


class OrderPaymentsResponse(BaseModel):
    orderId: uuid.UUID
    orderStatus: str
    paymentState: str  # unpaid / pending / paid / failed
    payments: list[PaymentStatusResponse]


def get_payment_provider(config: PaymentConfig = Depends(get_payment_config)) -> LipanaClient:
    """Dependency для клиента платежного провайдера."""
    return LipanaClient(config)


def get_payment_service(
    db: AsyncSession = Depends(get_db),
    config: PaymentConfig = Depends(get_payment_config),
    provider: LipanaClient = Depends(get_payment_provider),
) -> PaymentService:
    return PaymentService(db, config, provider)


@router.post("/initiate", response_model=InitiatePaymentResponse)
async def initiate_payment(
    request: InitiatePaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Отправить STK push на телефон покупателя.

    Создает платеж в статусе pending, итог придет через webhook.
    """
    try:
        result = await service.initiate_payment(
            customer_id=user.id,
            order_id=request.orderId,
            phone=request.phone,
            amount=request.amount,
        )
    except PaymentError:
        raise
    except Exception as e:
        logger.error(f"Error in initiate payment: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to initiate payment"},
        )

    return InitiatePaymentResponse(
        message="STK push sent to your phone",
        data=InitiatePaymentData(
            paymentId=result.payment.id,
            transactionId=result.transaction_id,
            checkoutRequestID=result.checkout_request_id,
        ),
    )


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Webhook Lipana с результатом STK push.

    Подпись проверяется по сырому телу запроса. Успешно обработанный
    webhook (включая повторный) подтверждается 200, чтобы провайдер не повторял доставку.
    """
    body = await request.body()
    signature = request.headers.get("X-Signature") or request.headers.get("X-Lipana-Signature")
    logger.info(f"Webhook received: {len(body)} bytes, signed={bool(signature)}")

    try:
        await service.process_webhook(body, signature)
    except SQLAlchemyError as e:
        return JSONResponse(status_code=500, content={"error": f"Database error: {e.__class__.__name__}"})

    return {"received": True}


@router.get("/orders/{order_id}", response_model=OrderPaymentsResponse)
async def get_order_payments(
    order_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Попытки оплаты заказа покупателя и итоговое состояние оплаты."""
    order, payments = await service.get_customer_order_payments(order_id, user.id)
    return OrderPaymentsResponse(
        orderId=order.id,
        orderStatus=order.status,
        paymentState=derive_order_payment_state(p.status for p in payments),
        payments=[PaymentStatusResponse.from_payment(p) for p in payments],
    )


@router.get("/{payment_id}", response_model=PaymentStatusResponse)
async def get_payment(
    payment_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Статус платежа для опроса клиентом после STK push."""
    payment = await service.get_customer_payment(payment_id, user.id)
    return PaymentStatusResponse.from_payment(payment)
