"""Общие фикстуры тестов."""
import os

# До импорта app: движок создается при импорте app.database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import json
import time
import uuid
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
from jose import jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.v1.payments import get_payment_provider
from app.config import PaymentConfig
from app.core.dependencies import get_payment_config
from app.core.security import compute_webhook_signature
from app.database import Base, build_session_factory, get_db
from app.main import app
from app.models import Order, Payment
from app.services.lipana_client import StkPushResult

JWT_SECRET = "test-jwt-secret"
WEBHOOK_SECRET = "test-webhook-secret"


class FakeProvider:
    """Подмена LipanaClient: запоминает вызовы, ничего не отправляет."""

    def __init__(self):
        self.calls: list[tuple[str, Decimal]] = []
        self.result = StkPushResult(transaction_id="tx_1", checkout_request_id="ws_CO_1", raw={})
        self.error: Exception | None = None

    async def push_stk(self, phone: str, amount: Decimal) -> StkPushResult:
        self.calls.append((phone, amount))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def config() -> PaymentConfig:
    return PaymentConfig(
        jwt_secret=JWT_SECRET,
        jwt_audience="authenticated",
        provider_api_key="test-key",
        provider_base_url="https://lipana.test/v1",
        provider_timeout=5.0,
        webhook_secret=WEBHOOK_SECRET,
        allow_unsigned_webhooks=False,
        country_calling_code="254",
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def client(session_factory, config, provider):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_config] = lambda: config
    app.dependency_overrides[get_payment_provider] = lambda: provider

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def customer_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def auth_headers():
    def _headers(
        user_id: uuid.UUID,
        role: str | None = None,
        secret: str = JWT_SECRET,
        extra_claims: dict | None = None,
    ) -> dict:
        claims = {
            "sub": str(user_id),
            "aud": "authenticated",
            "exp": int(time.time()) + 3600,
        }
        if role:
            claims["app_metadata"] = {"role": role}
        if extra_claims:
            claims.update(extra_claims)
        token = jwt.encode(claims, secret, algorithm="HS256")
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def sign_webhook():
    def _sign(body: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict]:
        raw = json.dumps(body).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Signature": compute_webhook_signature(raw, secret),
        }
        return raw, headers

    return _sign


@pytest.fixture
def create_order(session_factory):
    async def _create(customer_id: uuid.UUID, total: Decimal = Decimal("1500.00"), status: str = "pending") -> Order:
        async with session_factory() as session:
            order = Order(
                customer_id=customer_id,
                product_id=uuid.uuid4(),
                quantity=1,
                unit_price=total,
                total_price=total,
                status=status,
            )
            session.add(order)
            await session.commit()
            await session.refresh(order)
            return order

    return _create


@pytest.fixture
def create_payment(session_factory):
    async def _create(
        order: Order,
        transaction_id: str | None = "tx_1",
        status: str = "pending",
        created_at: datetime | None = None,
        receipt: str | None = None,
    ) -> Payment:
        async with session_factory() as session:
            payment = Payment(
                order_id=order.id,
                amount=order.total_price,
                phone_number="+254700111222",
                transaction_id=transaction_id,
                status=status,
                mpesa_receipt_number=receipt,
            )
            if created_at is not None:
                payment.created_at = created_at
            session.add(payment)
            await session.commit()
            await session.refresh(payment)
            return payment

    return _create


@pytest.fixture
def load(session_factory):
    """Свежая копия строки из БД."""

    async def _load(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _load


@pytest.fixture
def count_payments(session_factory):
    async def _count() -> int:
        async with session_factory() as session:
            result = await session.execute(select(func.count()).select_from(Payment))
            return result.scalar_one()

    return _count
