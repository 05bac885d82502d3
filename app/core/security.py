"""Безопасность: проверка токенов и подписи webhook."""
import hashlib
import hmac
from typing import Any

from jose import jwt


def decode_access_token(token: str, secret: str, audience: str | None = None) -> dict[str, Any] | None:
    """Декодирование JWT токена сервиса идентификации."""
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"], audience=audience)
        return payload
    except jwt.JWTError:
        return None


def compute_webhook_signature(payload: bytes, secret: str) -> str:
    """HMAC-SHA256 от сырого тела запроса в hex."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """
    Проверка подписи webhook.

    Подпись считается над точными байтами тела, до любого парсинга.
    Отсутствующая подпись не проходит проверку.
    """
    if not signature:
        return False
    expected_signature = compute_webhook_signature(payload, secret)
    # Заголовки приходят в latin-1, сравниваем байты
    received = signature.strip().lower().encode("utf-8")
    return hmac.compare_digest(received, expected_signature.encode())
