"""Last-resort error handling for requests."""

import logging
import traceback

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mailrules.middleware.logging import redact_pii

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turn unhandled exceptions into a generic 500 response.

    HTTPException and request validation errors never get here; FastAPI
    answers those itself.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", None)
            logger.error(
                "Unhandled exception on %s %s (request_id=%s): %s\n%s",
                request.method,
                redact_pii(request.url.path),
                request_id,
                redact_pii(str(exc)),
                redact_pii(traceback.format_exc()),
            )

            content = {
                "detail": "An internal error occurred. Please try again later.",
                "error_type": type(exc).__name__,
            }
            if request_id:
                content["request_id"] = request_id
            return JSONResponse(status_code=500, content=content)
