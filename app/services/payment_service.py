"""Сервис для работы с платежами M-Pesa."""
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import PaymentConfig
from app.core.exceptions import (
    InvalidPaymentRequest,
    InvalidSignature,
    MalformedPayload,
    NotFoundOrUnauthorized,
    OrderNotPayable,
    PaymentNotFound,
    PersistenceError,
)
from app.core.payment_rules import (
    OrderStatus,
    PaymentStatus,
    WebhookOutcome,
    can_transition,
    classify_event,
    normalize_phone,
    target_order_status,
    target_payment_status,
)
from app.core.security import verify_webhook_signature
from app.models.order import Order
from app.models.payment import Payment
from app.services.lipana_client import LipanaClient

logger = logging.getLogger(__name__)


class WebhookData(BaseModel):
    """Поле data в webhook от Lipana."""

    model_config = ConfigDict(extra="allow")

    transactionId: str
    mpesaReceiptNumber: str | None = None


class WebhookEnvelope(BaseModel):
    """Тело webhook от Lipana."""

    event: str
    data: WebhookData


@dataclass(frozen=True)
class InitiationResult:
    payment: Payment
    transaction_id: str | None
    checkout_request_id: str | None


@dataclass(frozen=True)
class WebhookResult:
    payment_id: uuid.UUID
    outcome: WebhookOutcome
    applied: bool


class PaymentService:
    """Сервис для работы с платежами."""

    def __init__(self, db: AsyncSession, config: PaymentConfig, provider: LipanaClient | None = None):
        self.db = db
        self.config = config
        self.provider = provider or LipanaClient(config)

    async def initiate_payment(
        self,
        customer_id: uuid.UUID,
        order_id: uuid.UUID,
        phone: str,
        amount: Decimal,
    ) -> InitiationResult:
        """
        Отправить STK push и сохранить платеж в статусе pending.

        Заказ читается с блокировкой строки, платеж вставляется в той же транзакции.
        Чужой и несуществующий заказ неразличимы для вызывающего.
        """
        logger.info(f"Initiating payment: order={order_id} amount={amount}")

        stmt = (
            select(Order)
            .options(selectinload(Order.payments))
            .where(Order.id == order_id, Order.customer_id == customer_id)
            .with_for_update(of=Order)
        )
        result = await self.db.execute(stmt)
        order = result.scalar_one_or_none()

        if not order:
            await self.db.rollback()
            logger.info(f"Order {order_id} not found for customer {customer_id}")
            raise NotFoundOrUnauthorized()

        try:
            self._ensure_payable(order, amount)
            formatted_phone = normalize_phone(phone, self.config.country_calling_code)
        except (InvalidPaymentRequest, OrderNotPayable):
            await self.db.rollback()
            raise

        logger.info(f"Formatted phone: {formatted_phone}")

        try:
            push = await self.provider.push_stk(formatted_phone, amount)
        except Exception:
            await self.db.rollback()
            raise

        payment = Payment(
            order_id=order.id,
            amount=amount,
            phone_number=formatted_phone,
            transaction_id=push.transaction_id,
            status=PaymentStatus.PENDING.value,
        )

        try:
            self.db.add(payment)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.critical(
                "RECONCILIATION REQUIRED: STK push sent but payment record not saved "
                f"(order={order_id} phone={formatted_phone} amount={amount} "
                f"transaction_id={push.transaction_id} checkout_request_id={push.checkout_request_id}): {e}",
                exc_info=True,
            )
            raise PersistenceError() from e

        await self.db.refresh(payment)
        logger.info(f"✅ Payment created: {payment.id} (transaction_id={payment.transaction_id})")

        return InitiationResult(
            payment=payment,
            transaction_id=push.transaction_id,
            checkout_request_id=push.checkout_request_id,
        )

    def _ensure_payable(self, order: Order, amount: Decimal) -> None:
        if order.status != OrderStatus.PENDING.value:
            raise OrderNotPayable(f"Order is {order.status} and cannot be paid")

        if any(p.status == PaymentStatus.SUCCESS.value for p in order.payments):
            raise OrderNotPayable("Order is already paid")

        if amount != order.total_price:
            raise InvalidPaymentRequest(
                f"Amount {amount} does not match order total {order.total_price}"
            )

    def verify_webhook(self, raw_body: bytes, signature: str | None) -> None:
        """
        Проверить подпись webhook.

        Без секрета webhook принимается только при явно включенном
        allow_unsigned_webhooks.
        """
        if not self.config.webhook_secret:
            if self.config.allow_unsigned_webhooks:
                logger.warning("⚠️ Webhook secret not configured - accepting unsigned webhook")
                return
            logger.error("❌ Webhook secret not configured and unsigned webhooks are disabled")
            raise InvalidSignature()

        if not verify_webhook_signature(raw_body, signature, self.config.webhook_secret):
            logger.error("❌ Invalid webhook signature")
            raise InvalidSignature()

    async def process_webhook(self, raw_body: bytes, signature: str | None) -> WebhookResult:
        """
        Обработать webhook от Lipana.

        Статус платежа меняется только из pending, поэтому повторная
        доставка того же события ничего не меняет.
        """
        self.verify_webhook(raw_body, signature)

        try:
            envelope = WebhookEnvelope.model_validate_json(raw_body)
        except ValidationError as e:
            logger.error(f"❌ Malformed webhook payload: {e.error_count()} errors")
            raise MalformedPayload() from e

        transaction_id = envelope.data.transactionId
        logger.info(f"Webhook event: {envelope.event} transaction_id={transaction_id}")

        stmt = (
            select(Payment)
            .options(selectinload(Payment.order))
            .where(Payment.transaction_id == transaction_id)
        )
        result = await self.db.execute(stmt)
        payment = result.scalar_one_or_none()

        if not payment:
            logger.warning(f"⚠️ Payment not found for transaction_id: {transaction_id}")
            raise PaymentNotFound()

        # rollback истекает ORM-объекты, дальше работаем только со значениями
        payment_id, order_id, current_status = payment.id, payment.order_id, payment.status
        logger.info(
            f"✅ Payment found: {payment_id}, current status: {current_status}, "
            f"order status: {payment.order.status}"
        )

        outcome = classify_event(envelope.event)
        new_payment_status = target_payment_status(outcome)

        if new_payment_status is None:
            logger.warning(f"Unrecognized event '{envelope.event}' for payment {payment_id}, acknowledging")
            return WebhookResult(payment_id=payment_id, outcome=outcome, applied=False)

        if not can_transition(current_status, new_payment_status):
            logger.warning(
                f"⚠️ Payment {payment_id} is already {current_status}, ignoring duplicate '{outcome.value}' webhook"
            )
            return WebhookResult(payment_id=payment_id, outcome=outcome, applied=False)

        try:
            applied = await self._apply_outcome(
                payment_id,
                order_id,
                outcome,
                new_payment_status,
                envelope.data.mpesaReceiptNumber,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"❌ Error applying webhook to payment {payment_id}: {e}", exc_info=True)
            raise

        if applied:
            logger.info(f"✅ Payment {payment_id} -> {new_payment_status.value} (order {order_id})")
        else:
            logger.warning(f"⚠️ Payment {payment_id} left pending concurrently, ignoring '{outcome.value}' webhook")
        return WebhookResult(payment_id=payment_id, outcome=outcome, applied=applied)

    async def _apply_outcome(
        self,
        payment_id: uuid.UUID,
        order_id: uuid.UUID,
        outcome: WebhookOutcome,
        new_status: PaymentStatus,
        receipt_number: str | None,
    ) -> bool:
        """
        Условное обновление платежа и заказа в одной транзакции.

        Returns:
            False, если платеж уже не в pending (повторная или устаревшая доставка)
        """
        now = datetime.utcnow()
        values = {"status": new_status.value, "updated_at": now}
        if receipt_number:
            values["mpesa_receipt_number"] = receipt_number

        payment_update = (
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(payment_update)

        if result.rowcount == 0:
            await self.db.rollback()
            return False

        new_order_status = target_order_status(outcome)
        if new_order_status is not None:
            order_update = (
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
                .values(status=new_order_status.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            order_result = await self.db.execute(order_update)
            if order_result.rowcount == 0:
                logger.warning(f"⚠️ Order {order_id} is not pending, leaving status unchanged")

        await self.db.commit()
        return True

    async def get_customer_payment(self, payment_id: uuid.UUID, customer_id: uuid.UUID) -> Payment:
        """Платеж покупателя (для опроса статуса после STK push)."""
        stmt = (
            select(Payment)
            .join(Order, Payment.order_id == Order.id)
            .where(Payment.id == payment_id, Order.customer_id == customer_id)
        )
        result = await self.db.execute(stmt)
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundOrUnauthorized("Payment not found")
        return payment

    async def get_customer_order_payments(self, order_id: uuid.UUID, customer_id: uuid.UUID) -> tuple[Order, list[Payment]]:
        """Заказ покупателя и его попытки оплаты, от новой к старой."""
        stmt = select(Order).where(Order.id == order_id, Order.customer_id == customer_id)
        result = await self.db.execute(stmt)
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundOrUnauthorized()

        stmt_payments = (
            select(Payment)
            .where(Payment.order_id == order.id)
            .order_by(Payment.created_at.desc())
        )
        result = await self.db.execute(stmt_payments)
        return order, list(result.scalars().all())

    async def list_payments(self, limit: int = 50, offset: int = 0) -> list[Payment]:
        """Все платежи с заказами (для админки), от новых к старым."""
        stmt = (
            select(Payment)
            .options(selectinload(Payment.order))
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
