"""Правила статусов платежей и заказов.

Платеж: pending -> success | failed, оба конечных статуса терминальные.
Заказ (в пределах платежного контура): pending -> processing при успешной оплате.
"""
import re
from enum import Enum
from typing import Iterable

from app.core.exceptions import InvalidPaymentRequest


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class WebhookOutcome(str, Enum):
    """Результат, который сообщает провайдер в webhook."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    UNRECOGNIZED = "unrecognized"


# Провайдер присылает как payment.*, так и transaction.* события
_EVENT_OUTCOMES: dict[str, WebhookOutcome] = {
    "payment.success": WebhookOutcome.SUCCESS,
    "transaction.success": WebhookOutcome.SUCCESS,
    "payment.failed": WebhookOutcome.FAILED,
    "transaction.failed": WebhookOutcome.FAILED,
    "payment.cancelled": WebhookOutcome.CANCELLED,
    "transaction.cancelled": WebhookOutcome.CANCELLED,
}

_TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.SUCCESS, PaymentStatus.FAILED})


def classify_event(event: str) -> WebhookOutcome:
    """Сопоставить имя события провайдера с вариантом результата."""
    return _EVENT_OUTCOMES.get(event.strip().lower(), WebhookOutcome.UNRECOGNIZED)


def target_payment_status(outcome: WebhookOutcome) -> PaymentStatus | None:
    """Статус платежа после события. None - событие ничего не меняет."""
    if outcome == WebhookOutcome.SUCCESS:
        return PaymentStatus.SUCCESS
    if outcome in (WebhookOutcome.FAILED, WebhookOutcome.CANCELLED):
        return PaymentStatus.FAILED
    return None


def target_order_status(outcome: WebhookOutcome) -> OrderStatus | None:
    """Статус заказа после события. Заказ двигается только при успешной оплате."""
    if outcome == WebhookOutcome.SUCCESS:
        return OrderStatus.PROCESSING
    return None


def is_terminal(status: str) -> bool:
    return PaymentStatus(status) in _TERMINAL_PAYMENT_STATUSES


def can_transition(current: str, target: str) -> bool:
    """Разрешены только переходы из pending в конечный статус."""
    return PaymentStatus(current) == PaymentStatus.PENDING and PaymentStatus(target) in _TERMINAL_PAYMENT_STATUSES


def normalize_phone(phone: str, calling_code: str = "254") -> str:
    """
    Привести номер к международному формату.

    "0712345678" -> "+254712345678"
    "254712345678" -> "+254712345678"
    "712345678" -> "+254712345678"
    """
    formatted = re.sub(r"[\s\-]", "", phone.strip())
    if not formatted:
        raise InvalidPaymentRequest("Phone number is required")

    if formatted.startswith("+"):
        return formatted
    if formatted.startswith("0"):
        return f"+{calling_code}{formatted[1:]}"
    if formatted.startswith(calling_code):
        return f"+{formatted}"
    return f"+{calling_code}{formatted}"


def derive_order_payment_state(payment_statuses: Iterable[str]) -> str:
    """
    Состояние оплаты заказа по его попыткам (от новой к старой).

    Returns:
        unpaid / pending / paid / failed
    """
    statuses = list(payment_statuses)
    if not statuses:
        return "unpaid"
    if PaymentStatus.SUCCESS.value in statuses:
        return "paid"
    latest = PaymentStatus(statuses[0])
    if latest == PaymentStatus.PENDING:
        return "pending"
    return "failed"
