"""Request-id middleware.

Binds a request id into the structlog context for the lifetime of each
request, so every log line emitted while serving it carries the same
``request_id``. A client-supplied X-Request-ID is honoured when it is a
reasonable token; otherwise a fresh ULID is generated. The id is echoed
back in the X-Request-ID response header.

Registration (in create_app() in app/main.py):
    application.add_middleware(RequestIdMiddleware)
"""

from __future__ import annotations

import re

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.utils.logger import clear_request_id, get_logger, set_request_id
from app.utils.ulid import generate_ulid

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Client ids are echoed into logs; keep them short and log-safe.
_SAFE_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request id to the logging context and the response."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = incoming if _SAFE_REQUEST_ID_RE.match(incoming) else generate_ulid()

        set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            clear_request_id()

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
