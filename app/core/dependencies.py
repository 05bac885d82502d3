"""Dependencies для FastAPI."""
import uuid
from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config import PaymentConfig, settings
from app.core.exceptions import AccessDenied, Unauthenticated
from app.core.security import decode_access_token

# auto_error=False: ответ 401 формирует наш обработчик ошибок, а не FastAPI
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Пользователь, полученный из bearer токена."""

    id: uuid.UUID
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_payment_config() -> PaymentConfig:
    """Dependency с настройками платежного контура."""
    return PaymentConfig.from_settings(settings)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    config: PaymentConfig = Depends(get_payment_config),
) -> CurrentUser:
    """
    Проверка bearer токена покупателя.

    Личность берется только из токена, никогда из тела запроса.
    """
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()

    payload = decode_access_token(credentials.credentials, config.jwt_secret, config.jwt_audience)
    if payload is None:
        raise Unauthenticated()

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise Unauthenticated()

    # Роль назначается вне сервиса и приходит в app_metadata
    app_metadata = payload.get("app_metadata")
    if not isinstance(app_metadata, dict):
        app_metadata = {}
    return CurrentUser(id=user_id, role=app_metadata.get("role"))


async def get_current_admin(
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Dependency для эндпоинтов администратора."""
    if not user.is_admin:
        raise AccessDenied()
    return user
