"""Request-scoped middleware for API requests."""

from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from api.base import current_request_id

_MAX_INCOMING_ID_LENGTH = 128


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID to every request, honoring a sane incoming X-Request-ID."""

    async def dispatch(self, request: Request, call_next):
        incoming = request.headers.get("X-Request-ID", "")
        if incoming and len(incoming) <= _MAX_INCOMING_ID_LENGTH and incoming.isprintable():
            request_id = incoming
        else:
            request_id = str(uuid4())

        request.state.request_id = request_id
        token = current_request_id.set(request_id)
        try:
            response = await call_next(request)
        finally:
            current_request_id.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response
