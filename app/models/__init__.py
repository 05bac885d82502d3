"""Модели базы данных."""
from app.models.order import Order
from app.models.payment import Payment

__all__ = [
    "Order",
    "Payment",
]
