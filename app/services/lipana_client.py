"""Клиент Lipana API для STK push (M-Pesa)."""
import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx

from app.config import PaymentConfig
from app.core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StkPushResult:
    """Идентификаторы, которые вернул провайдер."""

    transaction_id: str | None
    checkout_request_id: str | None
    raw: dict


def _amount_for_provider(amount: Decimal) -> int | float:
    # M-Pesa принимает целые шиллинги, дробную сумму не округляем молча
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


class LipanaClient:
    """
    Один запрос на один STK push.

    Повторов нет: повторный push может дважды показать покупателю запрос на оплату.
    """

    push_stk_path = "/transactions/push-stk"

    def __init__(self, config: PaymentConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport

    async def push_stk(self, phone: str, amount: Decimal) -> StkPushResult:
        """
        Отправить запрос на оплату на телефон покупателя.

        Returns:
            StkPushResult с transactionId и checkoutRequestID (оба могут отсутствовать)

        Raises:
            PaymentProviderError: провайдер недоступен или отклонил запрос
        """
        if not self.config.provider_api_key:
            raise PaymentProviderError("Payment provider is not configured")

        url = f"{self.config.provider_base_url}{self.push_stk_path}"
        payload = {"phone": phone, "amount": _amount_for_provider(amount)}

        async with httpx.AsyncClient(transport=self._transport, timeout=self.config.provider_timeout) as client:
            try:
                response = await client.post(
                    url,
                    json=payload,
                    headers={
                        "x-api-key": self.config.provider_api_key,
                        "Content-Type": "application/json",
                    },
                )
            except httpx.HTTPError as e:
                logger.error(f"Lipana request failed: {e!r}")
                raise PaymentProviderError("Payment provider is unavailable") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        logger.info(f"Lipana response: status={response.status_code} body={body}")

        if not response.is_success:
            message = body.get("message") if isinstance(body, dict) else None
            if not isinstance(message, str):
                message = None
            logger.error(f"Lipana rejected STK push: status={response.status_code} message={message}")
            raise PaymentProviderError(message or "Failed to initiate payment")

        if not isinstance(body, dict):
            raise PaymentProviderError("Unexpected response from payment provider")

        data = body.get("data") or {}
        return StkPushResult(
            transaction_id=data.get("transactionId"),
            checkout_request_id=data.get("checkoutRequestID"),
            raw=body,
        )
