"""Server-rendered pages that need a session, plus the health check."""

import html

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from auth.config import AuthConfig
from auth.resolver import SessionResolver
from auth.route_guard import login_redirect_url
from auth.security_middleware import get_credentials
from core.services.order_service import OrderService


def _account_html(email: str, member_since: str, orders: list) -> str:
    rows = "".join(
        f"<tr><td>{html.escape(o.order_number)}</td>"
        f"<td>{o.created_at:%Y-%m-%d}</td>"
        f"<td>{o.total:.2f}</td>"
        f"<td>{html.escape(o.status.value)}</td></tr>"
        for o in orders
    )
    body = (
        f"<table><thead><tr><th>Order</th><th>Date</th><th>Total</th><th>Status</th></tr></thead>"
        f"<tbody>{rows}</tbody></table>"
        if orders
        else "<p>No orders yet.</p>"
    )
    return (
        "<!doctype html><html><head><title>My Account</title></head><body>"
        "<h1>My Account</h1>"
        f"<p>Email: {html.escape(email)}</p>"
        f"<p>Member since: {html.escape(member_since)}</p>"
        f"<h2>Orders</h2>{body}"
        "</body></html>"
    )


def create_pages_router(
    config: AuthConfig,
    resolver: SessionResolver,
    order_svc: OrderService,
) -> APIRouter:
    router = APIRouter(tags=["pages"])

    @router.get("/account", response_class=HTMLResponse)
    async def account(request: Request):
        """The route guard only checked the marker; an invalid session still ends at login."""
        store = get_credentials(request)
        resolution = await resolver.resolve(store)
        if resolution.session is None:
            return RedirectResponse(login_redirect_url("/account", config), status_code=302)

        user = resolution.session.user
        orders = await order_svc.list_orders(store)
        member_since = f"{user.created_at:%Y-%m-%d}" if user.created_at else "unknown"
        return HTMLResponse(_account_html(user.email or "", member_since, orders))

    @router.get("/health")
    async def health():
        return {"status": "ok"}

    return router
