"""Order domain models.

Amounts are decimal currency units (12.50 = twelve fifty) with two places,
matching the NUMERIC(10, 2) columns. Request payloads use the camelCase keys
the storefront client sends; stored rows are snake_case.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    """Order lifecycle status."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderItemCreate(BaseModel):
    """One line of an order request."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1, max_length=255)
    quantity: int = Field(..., ge=1, le=1000)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)


class OrderCreate(BaseModel):
    """Order request as submitted by the client (or built from a paid checkout).

    The order number is never taken from the request; the gate assigns it.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId")
    total: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    items: list[OrderItemCreate] = Field(..., min_length=1)
    status: OrderStatus = OrderStatus.PENDING


class OrderItem(BaseModel):
    """Order line as stored."""

    id: UUID
    order_id: UUID
    product_id: str
    quantity: int
    price: Decimal

    model_config = {"from_attributes": True}


class Order(BaseModel):
    """Full order entity as stored."""

    id: UUID
    user_id: UUID
    order_number: str
    total: Decimal
    status: OrderStatus
    created_at: datetime
    items: list[OrderItem] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class OrderResult(BaseModel):
    """What the order gate reports back: the row id and the shared order number."""

    order_id: UUID
    order_number: str
    path: str = Field(..., description="'primary' or 'fallback' - which writer succeeded")
