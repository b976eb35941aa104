"""
Request ID middleware.

Every request gets an id (the client's X-Request-ID if it sent one), echoed
back in the response and stamped on every log record written while the
request is handled.
"""

import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from utils.logger import request_id_var

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        # ContextVar keeps concurrent requests from seeing each other's id
        token = request_id_var.set(request_id)
        try:
            response: Response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            request_id_var.reset(token)

def get_request_id(request: Request) -> str:
    """
    Request id for the current request, or "no-request-id" outside of the
    middleware.
    """
    return getattr(request.state, "request_id", "no-request-id")
