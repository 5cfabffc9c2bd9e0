"""
Order creation gate.

An order is only written for the identity the session resolver verified, and
only when the request names that same identity as the owner. Writing goes
through a PlaceOrderCommand: the order number is fixed before the first
attempt, so the primary path (hosted REST API) and the fallback (direct
Postgres) can never produce two orders for one purchase.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID, uuid4

import psycopg2

from auth.credentials import CredentialStore
from auth.exceptions import ForbiddenError
from auth.resolver import SessionResolver
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.types import Session
from clients.backend_client import BackendClient, BackendError
from clients.postgres_client import PostgresClient
from core.models import Order, OrderCreate, OrderItem, OrderItemCreate, OrderResult, OrderStatus
from utils.timezone import now_utc
from utils.user_context import user_context

logger = logging.getLogger(__name__)


class OrderInsertionError(Exception):
    """Neither write path produced a complete order."""

    def __init__(self, message: str, order_number: str):
        self.order_number = order_number
        super().__init__(message)


class OrderWriteError(Exception):
    """One write path failed. order_id is set if the order row made it in."""

    def __init__(self, message: str, order_id: UUID | None = None):
        self.order_id = order_id
        super().__init__(message)


def generate_order_number() -> str:
    """Format: ORD-YYYYMMDD-XXXXXXXXXXXX (12 random hex digits)."""
    return f"ORD-{now_utc():%Y%m%d}-{uuid4().hex[:12].upper()}"


@dataclass(frozen=True)
class PlaceOrderCommand:
    """Everything needed to write one order, identical for every attempt."""

    order_number: str
    user_id: UUID
    access_token: str
    total: Decimal
    status: OrderStatus
    items: tuple[OrderItemCreate, ...]

    @classmethod
    def for_session(
        cls, session: Session, body: OrderCreate, order_number: str | None = None
    ) -> "PlaceOrderCommand":
        return cls(
            order_number=order_number or generate_order_number(),
            user_id=session.user.id,
            access_token=session.access_token,
            total=body.total,
            status=body.status,
            items=tuple(body.items),
        )

    def order_row(self) -> dict:
        return {
            "user_id": str(self.user_id),
            "order_number": self.order_number,
            "total": str(self.total),
            "status": self.status.value,
        }

    def item_rows(self, order_id: UUID) -> list[dict]:
        return [
            {
                "order_id": str(order_id),
                "product_id": item.product_id,
                "quantity": item.quantity,
                "price": str(item.price),
            }
            for item in self.items
        ]


class OrderWriter(Protocol):
    name: str

    async def write(self, command: PlaceOrderCommand) -> UUID:
        """Write order then items, return the order id. Raises OrderWriteError."""
        ...


class BackendOrderWriter:
    """Primary path: hosted REST API with the caller's own access token."""

    name = "primary"

    def __init__(self, backend: BackendClient):
        self._backend = backend

    async def write(self, command: PlaceOrderCommand) -> UUID:
        try:
            row = await self._backend.insert_order(command.access_token, command.order_row())
        except BackendError as e:
            raise OrderWriteError(f"Order insert failed: {e.message}") from e

        order_id = UUID(str(row["id"]))
        try:
            await self._backend.insert_order_items(command.access_token, command.item_rows(order_id))
        except BackendError as e:
            raise OrderWriteError(f"Order items insert failed: {e.message}", order_id=order_id) from e
        return order_id


class DirectOrderWriter:
    """Fallback path: direct Postgres write scoped to the caller by RLS.

    An existing row with the same order number is never updated. The caller's
    own row without items (left by a failed primary attempt) gets the items;
    the caller's complete row is returned as is.
    """

    name = "fallback"

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    async def write(self, command: PlaceOrderCommand) -> UUID:
        return await asyncio.to_thread(self._write, command)

    def _write(self, command: PlaceOrderCommand) -> UUID:
        order = command.order_row()
        with user_context(command.user_id):
            try:
                rows = self._db.execute_returning(
                    """
                    INSERT INTO orders (user_id, order_number, total, status, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (order_number) DO NOTHING
                    RETURNING id
                    """,
                    (order["user_id"], order["order_number"], order["total"], order["status"], now_utc()),
                )
                existing = None if rows else self._db.execute_single(
                    """
                    SELECT o.id,
                           EXISTS (SELECT 1 FROM order_items i WHERE i.order_id = o.id) AS has_items
                    FROM orders o
                    WHERE o.order_number = %s AND o.user_id = %s
                    """,
                    (order["order_number"], order["user_id"]),
                )
            except psycopg2.Error as e:
                raise OrderWriteError(f"Direct order insert failed: {e}") from e

            if rows:
                order_id = _as_uuid(rows[0]["id"])
            elif existing is None:
                raise OrderWriteError("Order number already belongs to another user")
            else:
                order_id = _as_uuid(existing["id"])
                if existing["has_items"]:
                    logger.info(f"Order {command.order_number} already complete, left unchanged")
                    return order_id
                logger.info(f"Reusing order row {order_id} left without items")

            try:
                self._db.execute_many(
                    """
                    INSERT INTO order_items (order_id, product_id, quantity, price)
                    VALUES (%(order_id)s, %(product_id)s, %(quantity)s, %(price)s)
                    """,
                    command.item_rows(order_id),
                )
            except psycopg2.Error as e:
                raise OrderWriteError(f"Direct items insert failed: {e}", order_id=order_id) from e

        return order_id


def _as_uuid(value) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _order_from_row(row: dict) -> Order:
    items = [OrderItem.model_validate(item) for item in row.get("order_items") or []]
    return Order.model_validate({**row, "items": items})


class OrderService:
    """Resolves the caller, checks ownership, places and lists orders."""

    def __init__(
        self,
        resolver: SessionResolver,
        backend: BackendClient,
        primary: OrderWriter,
        fallback: OrderWriter,
        security_logger: SecurityLogger | None = None,
    ):
        self._resolver = resolver
        self._backend = backend
        self._primary = primary
        self._fallback = fallback
        self._security_logger = security_logger

    async def caller(self, store: CredentialStore) -> Session:
        """The verified caller. Raises UnauthorizedError (or a subclass)."""
        return await self._resolver.require(store)

    async def create_order(self, store: CredentialStore, body: OrderCreate) -> OrderResult:
        """
        Create an order for the caller.

        Raises:
            UnauthorizedError: (or a subclass) No resolvable session.
            ForbiddenError: body.user_id is not the caller. Nothing is written.
            OrderInsertionError: Both write paths failed.
        """
        session = await self.caller(store)
        return await self.create_order_for_session(session, body)

    async def create_order_for_session(
        self, session: Session, body: OrderCreate, order_number: str | None = None
    ) -> OrderResult:
        """Ownership check and placement for an already resolved session.

        order_number is for internal callers that derive a stable number
        (a paid checkout); client requests always get a generated one.
        """
        if body.user_id != session.user.id:
            logger.warning(f"User {session.user.id} tried to create an order for {body.user_id}")
            if self._security_logger is not None:
                self._security_logger.log(
                    SecurityEvent.ORDER_IDENTITY_MISMATCH,
                    user_id=session.user.id,
                    details={"requested_user_id": str(body.user_id)},
                )
            raise ForbiddenError("Cannot create orders for other users")

        return await self.place(PlaceOrderCommand.for_session(session, body, order_number))

    async def place(self, command: PlaceOrderCommand) -> OrderResult:
        """Primary writer first, fallback with the same order number second.

        A partial write (order row without items) is logged and left in place;
        the fallback reuses that row instead of inserting another.
        """
        try:
            order_id = await self._primary.write(command)
            logger.info(f"Order {command.order_number} created via {self._primary.name} path")
            return OrderResult(order_id=order_id, order_number=command.order_number, path=self._primary.name)
        except OrderWriteError as e:
            if e.order_id is not None:
                logger.warning(f"Partial order {command.order_number}: row {e.order_id} written without items")
            logger.warning(f"Primary order write failed ({e}), trying {self._fallback.name} path")

        try:
            order_id = await self._fallback.write(command)
        except OrderWriteError as e:
            if e.order_id is not None:
                logger.error(f"Partial order {command.order_number}: row {e.order_id} left without items")
            logger.error(f"Order {command.order_number} failed on both paths: {e}")
            raise OrderInsertionError(
                "Failed to create order", order_number=command.order_number
            ) from e

        logger.info(f"Order {command.order_number} created via {self._fallback.name} path")
        return OrderResult(order_id=order_id, order_number=command.order_number, path=self._fallback.name)

    async def list_orders(self, store: CredentialStore) -> list[Order]:
        """
        Caller's orders with items, newest first.

        Raises:
            UnauthorizedError: (or a subclass) No resolvable session.
            BackendError: Hosted REST API unavailable.
        """
        session = await self.caller(store)
        rows = await self._backend.list_orders(session.access_token)
        return [_order_from_row(row) for row in rows]
