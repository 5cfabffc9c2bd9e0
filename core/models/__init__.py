"""Core domain models."""

from core.models.order import (
    Order,
    OrderCreate,
    OrderItem,
    OrderItemCreate,
    OrderResult,
    OrderStatus,
)
from core.models.checkout import CheckoutItem, CheckoutLineItem, CheckoutRequest, CheckoutSession

__all__ = [
    # Order
    "Order", "OrderCreate", "OrderItem", "OrderItemCreate", "OrderResult", "OrderStatus",
    # Checkout
    "CheckoutItem", "CheckoutLineItem", "CheckoutRequest", "CheckoutSession",
]
