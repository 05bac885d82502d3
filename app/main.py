"""Главный файл приложения."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.api.v1 import router as api_v1_router
from app.core.exceptions import PaymentError

# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения."""
    # Startup
    if settings.lipana_webhook_secret:
        logger.info("Webhook signature verification enabled")
    elif settings.lipana_allow_unsigned_webhooks:
        logger.warning("⚠️ LIPANA_WEBHOOK_SECRET is not set - unsigned webhooks WILL be accepted")
    else:
        logger.warning("⚠️ LIPANA_WEBHOOK_SECRET is not set - all webhooks will be rejected")

    if not settings.lipana_api_key:
        logger.warning("⚠️ LIPANA_API_KEY is not set - STK push requests will fail")

    yield


app = FastAPI(
    title="Meter Store Payments API",
    description="M-Pesa STK push и webhook для интернет-магазина приборов учета",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS - в development режиме разрешаем все origins
if settings.is_development:
    cors_origins = ["*"]
    # Нельзя использовать allow_credentials=True с allow_origins=["*"]
    allow_creds = False
else:
    cors_origins = list(set(settings.cors_origins))
    allow_creds = True

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_creds,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "content-type", "x-signature", "x-lipana-signature"],
)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    """Ошибки платежного контура -> JSON ответ с нужным статусом."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Ошибки валидации в том же формате, что и остальные ответы API."""
    errors = "; ".join(f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors())
    return JSONResponse(status_code=422, content={"success": False, "error": errors})


# Подключаем роутеры
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Корневой endpoint."""
    return {
        "message": "Meter Store Payments API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok"}
