"""Security middleware for FastAPI - request-bound credential store and cookie write-back."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from auth.config import AuthConfig
from auth.credentials import CredentialStore
from utils.user_context import clear_current_user_id


def get_credentials(request: Request) -> CredentialStore:
    """The CredentialStore bound to this request by CredentialMiddleware."""
    store = getattr(request.state, "credentials", None)
    if store is None:
        raise RuntimeError("CredentialMiddleware is not installed on this app")
    return store


class CredentialMiddleware(BaseHTTPMiddleware):
    """Binds a CredentialStore to every request and writes its cookies back.

    1. Reads the three auth cookies into request.state.credentials
    2. Handlers (and the resolver / refresh coordinator) mutate the store
    3. Pending mutations become Set-Cookie headers on whatever response
       the handler produced, error responses included
    4. User context is always cleared once the request completes
    """

    def __init__(self, app, config: AuthConfig):
        super().__init__(app)
        self._config = config

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        store = CredentialStore(request.cookies, self._config)
        request.state.credentials = store

        try:
            response = await call_next(request)
        finally:
            clear_current_user_id()

        if store.has_pending_mutations:
            store.apply(response)
            # Responses carrying credentials must never be cached
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, proxy-revalidate"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"

        return response
