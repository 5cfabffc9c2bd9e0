"""Checkout endpoints: payment session, success completion, processor webhook."""

import logging

from fastapi import APIRouter, Query, Request

from api.base import success_response
from auth.security_middleware import get_credentials
from core.models import CheckoutRequest
from core.services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"


def create_checkout_router(checkout_svc: CheckoutService) -> APIRouter:
    router = APIRouter(tags=["checkout"])

    @router.post("/checkout_session")
    async def create_checkout_session(body: CheckoutRequest):
        session = await checkout_svc.create_session(body)
        return success_response({"url": session.url, "id": session.id}).model_dump(mode="json")

    @router.get("/checkout/success")
    async def checkout_success(request: Request, session_id: str = Query(..., min_length=1)):
        result = await checkout_svc.complete(get_credentials(request), session_id)
        return success_response(result).model_dump(mode="json")

    @router.post("/webhook")
    async def webhook(request: Request):
        """Raw body is verified before parsing; 400 on signature mismatch."""
        payload = await request.body()
        event_type = checkout_svc.handle_webhook(payload, request.headers.get(SIGNATURE_HEADER))
        return success_response({"received": True, "type": event_type}).model_dump(mode="json")

    return router
