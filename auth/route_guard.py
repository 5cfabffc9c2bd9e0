"""Route guard - cheap redirect decisions from the liveness marker alone.

The guard never validates tokens. It only keeps protected page shells from
rendering for visitors who are obviously logged out, and keeps logged-in
visitors off the login page. Handlers still resolve the session themselves.
"""

import logging
from enum import Enum
from urllib.parse import quote

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from auth.config import AuthConfig
from auth.types import AUTHENTICATED_MARKER

logger = logging.getLogger(__name__)


class PathClass(str, Enum):
    PROTECTED = "protected"
    AUTH_ONLY = "auth_only"
    PUBLIC = "public"


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def _is_exempt(path: str, config: AuthConfig) -> bool:
    return any(path.startswith(prefix) for prefix in config.guard_exempt_prefixes)


def classify_path(path: str, config: AuthConfig) -> PathClass:
    """Classify a request path. Exempt prefixes (API, static) are PUBLIC."""
    if _is_exempt(path, config):
        return PathClass.PUBLIC
    if any(_matches(path, prefix) for prefix in config.protected_paths):
        return PathClass.PROTECTED
    if any(_matches(path, prefix) for prefix in config.auth_only_paths):
        return PathClass.AUTH_ONLY
    return PathClass.PUBLIC


def login_redirect_url(path: str, config: AuthConfig) -> str:
    """Login URL that returns the visitor to `path` afterwards."""
    return f"{config.login_path}?redirect={quote(path, safe='/')}"


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Redirects by path class and auth-state cookie presence.

    - protected + no marker -> 302 to login with ?redirect=<path>
    - auth-only + marker -> 302 to the catalog
    - anything else passes through; marked requests get X-Auth-Check: refresh
    """

    def __init__(self, app, config: AuthConfig):
        super().__init__(app)
        self._config = config

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        path_class = classify_path(path, self._config)
        marked = request.cookies.get(self._config.auth_state_cookie_name) == AUTHENTICATED_MARKER

        if path_class == PathClass.PROTECTED and not marked:
            logger.debug(f"Unauthenticated access to protected path {path}")
            return RedirectResponse(login_redirect_url(path, self._config), status_code=302)

        if path_class == PathClass.AUTH_ONLY and marked:
            logger.debug(f"Already authenticated, redirecting away from {path}")
            return RedirectResponse(self._config.post_login_path, status_code=302)

        response = await call_next(request)
        if marked and not _is_exempt(path, self._config):
            response.headers["X-Auth-Check"] = "refresh"
        return response
