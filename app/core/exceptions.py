"""Ошибки платежного контура.

Каждая ошибка знает свой HTTP-статус и формат тела ответа.
Ошибки инициации отдаются клиенту как {"success": false, "error": ...},
ошибки webhook отдаются провайдеру как {"error": ...}.
"""


class PaymentError(Exception):
    """Базовая ошибка платежного контура."""

    status_code: int = 500
    default_message: str = "Failed to initiate payment"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_body(self) -> dict:
        return {"success": False, "error": self.message}


class Unauthenticated(PaymentError):
    status_code = 401
    default_message = "Unauthorized"


class AccessDenied(PaymentError):
    status_code = 403
    default_message = "Insufficient permissions"


class NotFoundOrUnauthorized(PaymentError):
    # Одно сообщение для "нет заказа" и "чужой заказ"
    status_code = 404
    default_message = "Order not found or unauthorized"


class InvalidPaymentRequest(PaymentError):
    status_code = 400
    default_message = "Invalid payment request"


class OrderNotPayable(PaymentError):
    status_code = 409
    default_message = "Order cannot be paid in its current state"


class PaymentProviderError(PaymentError):
    status_code = 500
    default_message = "Failed to initiate payment"


class PersistenceError(PaymentError):
    """STK push уже отправлен, но локальная запись не сохранена."""

    status_code = 500
    default_message = "Failed to create payment record"


class WebhookError(PaymentError):
    """Ошибки webhook: формат тела без поля success."""

    default_message = "Webhook processing failed"

    def to_body(self) -> dict:
        return {"error": self.message}


class InvalidSignature(WebhookError):
    status_code = 401
    default_message = "Invalid signature"


class MalformedPayload(WebhookError):
    status_code = 400
    default_message = "Malformed payload"


class PaymentNotFound(WebhookError):
    status_code = 404
    default_message = "Payment not found"
