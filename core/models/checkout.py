"""Checkout domain models.

Cart lines arrive in currency units; the payment processor works in the
smallest currency unit (cents), so conversion happens at this boundary.
"""

from decimal import Decimal, ROUND_HALF_UP

from pydantic import BaseModel, Field


class CheckoutItem(BaseModel):
    """Cart line submitted for payment."""

    id: str = Field(..., min_length=1, max_length=255, description="Catalog product id")
    name: str = Field(..., min_length=1, max_length=500)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    quantity: int = Field(..., ge=1, le=1000)
    image: str | None = None

    @property
    def unit_amount_cents(self) -> int:
        return int((self.price * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(..., min_length=1)


class CheckoutLineItem(BaseModel):
    """Paid line as reported back by the processor."""

    product_id: str
    name: str
    quantity: int
    amount_total_cents: int


class CheckoutSession(BaseModel):
    """Processor-side checkout session, reduced to what order creation needs."""

    id: str
    status: str | None = None
    payment_status: str | None = None
    url: str | None = None
    amount_total_cents: int = 0
    customer_email: str | None = None
    line_items: list[CheckoutLineItem] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.status == "complete"
