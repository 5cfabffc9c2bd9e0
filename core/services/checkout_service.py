"""
Checkout service: hosted payment page in, order out.

The processor owns the payment; this service only opens sessions, turns a
completed session into an order through the order gate, and acknowledges
verified webhooks. Processor calls are blocking and run in a worker thread.
"""

import asyncio
import hashlib
import logging
from decimal import Decimal

from auth.config import AuthConfig
from auth.credentials import CredentialStore
from auth.resolver import SessionResolver
from clients.payment_client import PaymentClient
from core.models import (
    CheckoutLineItem,
    CheckoutRequest,
    CheckoutSession,
    OrderCreate,
    OrderItemCreate,
    OrderStatus,
)
from core.services.order_service import OrderService

logger = logging.getLogger(__name__)

SUCCESS_PAGE_PATH = "/cart/checkout/success"
CANCEL_PAGE_PATH = "/cart"


def order_number_for_checkout(session_id: str) -> str:
    """Stable order number per checkout session, so reloading the success page is idempotent."""
    return f"ORD-CS-{hashlib.sha256(session_id.encode('utf-8')).hexdigest()[:16].upper()}"


def _cents(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def _order_items(line: CheckoutLineItem) -> list[OrderItemCreate]:
    """Unit-priced rows whose sum is exactly the paid line total.

    A total that does not divide by the quantity (discounts) puts the
    leftover cents on one unit of its own.
    """
    unit, remainder = divmod(line.amount_total_cents, line.quantity)
    if remainder == 0:
        return [OrderItemCreate(product_id=line.product_id, quantity=line.quantity, price=_cents(unit))]

    items = [OrderItemCreate(product_id=line.product_id, quantity=1, price=_cents(unit + remainder))]
    if line.quantity > 1:
        items.insert(0, OrderItemCreate(product_id=line.product_id, quantity=line.quantity - 1, price=_cents(unit)))
    return items


class CheckoutService:
    """Payment sessions, completion and webhooks."""

    def __init__(
        self,
        config: AuthConfig,
        payments: PaymentClient,
        orders: OrderService,
        resolver: SessionResolver,
    ):
        self._config = config
        self._payments = payments
        self._orders = orders
        self._resolver = resolver

    async def create_session(self, request: CheckoutRequest) -> CheckoutSession:
        """Open a hosted payment page for the cart. Redirects go to app_base_url only."""
        base = self._config.app_base_url.rstrip("/")
        return await asyncio.to_thread(
            self._payments.create_checkout_session,
            request.items,
            f"{base}{SUCCESS_PAGE_PATH}?session_id={{CHECKOUT_SESSION_ID}}",
            f"{base}{CANCEL_PAGE_PATH}?canceled=true",
        )

    async def complete(self, store: CredentialStore, session_id: str) -> dict:
        """
        Turn a paid checkout session into an order for the caller.

        Returns a dict with status, orderCreated and (when created) orderId
        and orderNumber. A session that is not complete yet creates nothing.

        Raises:
            UnauthorizedError: (or a subclass) No resolvable session.
            PaymentProcessorError: Session could not be retrieved.
            OrderInsertionError: Both order write paths failed.
        """
        session = await self._resolver.require(store)
        checkout = await asyncio.to_thread(self._payments.retrieve_checkout_session, session_id)

        if not checkout.is_complete:
            logger.info(f"Checkout {checkout.id} is {checkout.status}, no order created")
            return {"status": checkout.status, "orderCreated": False}

        if not checkout.line_items:
            logger.warning(f"Checkout {checkout.id} completed without line items")
            return {"status": checkout.status, "orderCreated": False}

        body = OrderCreate(
            user_id=session.user.id,
            total=_cents(checkout.amount_total_cents),
            status=OrderStatus.COMPLETED,
            items=[item for line in checkout.line_items for item in _order_items(line)],
        )
        result = await self._orders.create_order_for_session(
            session, body, order_number=order_number_for_checkout(checkout.id)
        )
        return {
            "status": checkout.status,
            "orderCreated": True,
            "orderId": str(result.order_id),
            "orderNumber": result.order_number,
        }

    def handle_webhook(self, payload: bytes, signature_header: str | None) -> str:
        """
        Verify a webhook delivery and acknowledge it. Returns the event type.

        Orders are created from the success page, where the buyer's session is
        available; the webhook only records that the payment happened.

        Raises:
            WebhookSignatureError: Signature check failed.
        """
        event = self._payments.construct_event(payload, signature_header)
        event_type = event.get("type", "unknown")

        if event_type == "checkout.session.completed":
            obj = (event.get("data") or {}).get("object") or {}
            logger.info(f"Payment successful for session {obj.get('id')}")
        else:
            logger.info(f"Unhandled webhook event type: {event_type}")
        return event_type
