"""HTTP routes for authentication."""

import ipaddress

from fastapi import APIRouter, Request

from api.base import success_response
from auth.exceptions import DefinitiveRefreshError, TransientRefreshError
from auth.resolver import SessionResolver
from auth.security_middleware import get_credentials
from auth.service import AuthService
from auth.types import LoginRequest, RefreshFailure, RegisterRequest, User


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _user_payload(user: User) -> dict:
    return {"user": user.model_dump(mode="json")}


def create_auth_router(auth_service: AuthService, resolver: SessionResolver) -> APIRouter:
    """Create auth router with injected service.

    Auth failures are raised, not returned; api.errors maps them to statuses
    and CredentialMiddleware writes any cookie changes onto that response.
    """
    router = APIRouter(tags=["auth"])

    @router.post("/login")
    async def login(request: Request, body: LoginRequest):
        """Password login. Sets access, refresh and auth-state cookies."""
        user = await auth_service.login(
            email=body.email,
            password=body.password,
            store=get_credentials(request),
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response(_user_payload(user)).model_dump(mode="json")

    @router.post("/register")
    async def register(request: Request, body: RegisterRequest):
        """Create an account. The user logs in separately afterwards."""
        user = await auth_service.register(
            email=body.email,
            password=body.password,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response(_user_payload(user)).model_dump(mode="json")

    @router.post("/logout")
    async def logout(request: Request):
        """Logout - revoke provider session and clear all three cookies."""
        await auth_service.logout(
            store=get_credentials(request),
            ip_address=_get_client_ip(request),
        )
        return success_response({"message": "Logged out successfully"}).model_dump(mode="json")

    @router.post("/refresh")
    async def refresh(request: Request):
        """Rotate the token pair.

        200 with new cookies, 204 on partial auth, 401 otherwise. Cookies are
        cleared only when the provider rejected the refresh token for good.
        """
        result = await auth_service.refresh(get_credentials(request))
        if not result.ok:
            if result.failure == RefreshFailure.DEFINITIVE:
                raise DefinitiveRefreshError(result.message or "Session expired")
            raise TransientRefreshError(result.message or "Session refresh temporarily failed")

        data = {"message": "Session refreshed successfully"}
        if result.session.user is not None:
            data.update(_user_payload(result.session.user))
        return success_response(data).model_dump(mode="json")

    @router.get("/me")
    async def get_current_user(request: Request):
        """The identity behind the caller's cookies (may refresh on the way)."""
        session = await resolver.require(get_credentials(request))
        return success_response(_user_payload(session.user)).model_dump(mode="json")

    return router
