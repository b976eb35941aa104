"""
Middleware package exports.
"""

from middleware.request_id import RequestIDMiddleware, get_request_id, request_id_var
from middleware.rate_limiter import limiter, get_user_id

__all__ = ["RequestIDMiddleware", "get_request_id", "request_id_var", "limiter", "get_user_id"]
