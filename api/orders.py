"""Order endpoints: POST/GET /api/orders."""

from fastapi import APIRouter, Depends, Request

from api.base import success_response
from auth.security_middleware import get_credentials
from core.models import OrderCreate
from core.services.order_service import OrderService


def create_orders_router(order_svc: OrderService) -> APIRouter:
    router = APIRouter(tags=["orders"])

    async def require_caller(request: Request) -> None:
        """Resolve before the body is validated, so a logged-out caller gets 401, not 422.

        The resolution is cached on the request's credential store, so the
        handler's own resolve makes no further network call.
        """
        await order_svc.caller(get_credentials(request))

    @router.post("/orders", dependencies=[Depends(require_caller)])
    async def create_order(request: Request, body: OrderCreate):
        """401 without a session, 403 for someone else's userId, 500 if both write paths fail."""
        result = await order_svc.create_order(get_credentials(request), body)
        return success_response({
            "orderId": str(result.order_id),
            "orderNumber": result.order_number,
        }).model_dump(mode="json")

    @router.get("/orders")
    async def list_orders(request: Request):
        orders = await order_svc.list_orders(get_credentials(request))
        return success_response({
            "orders": [o.model_dump(mode="json") for o in orders],
        }).model_dump(mode="json")

    return router
