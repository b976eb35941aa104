"""
Logging utility functions and helpers.
"""

import logging
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Set by RequestIDMiddleware for the duration of a request
request_id_var: ContextVar[str] = ContextVar("request_id", default="no-request-id")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Configured logger

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)


class RequestIDFilter(logging.Filter):
    """
    Adds `request_id` to every record that passes through a handler.
    """
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


# Never shown, not even partially
FULLY_REDACTED_FIELDS = {'password', 'secret', 'refresh_token', 'token_hash', 'digest'}

SENSITIVE_FIELDS = FULLY_REDACTED_FIELDS | {
    'token', 'api_key', 'access_token', 'authorization'
}


def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove sensitive information from log data.

    Args:
        data: Dictionary that may contain sensitive fields

    Returns:
        Sanitized dictionary safe for logging

    Refresh secrets and their digests are fully redacted. Access tokens keep
    their first 8 characters (the JWT header) to help debugging.
    """
    sanitized = data.copy()

    for key, value in sanitized.items():
        lowered = key.lower()
        # Check if key contains sensitive field name (case-insensitive)
        if any(sensitive in lowered for sensitive in SENSITIVE_FIELDS):
            if isinstance(value, str):
                fully = any(field in lowered for field in FULLY_REDACTED_FIELDS)
                if not fully and len(value) > 8:
                    sanitized[key] = f"{value[:8]}..."
                else:
                    sanitized[key] = "***REDACTED***"

        # Recursively sanitize nested dictionaries
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)

    return sanitized


def log_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_ip: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None
):
    """
    Log HTTP request in a structured format.

    Args:
        logger: Logger instance
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status_code: HTTP status code
        duration_ms: Request duration in milliseconds
        client_ip: Client address (if known)
        extra: Additional context to log

    Usage:
        log_request(logger, "POST", "/auth/refresh", 200, 45.2, client_ip="10.0.0.1")
    """
    log_data = {
        "http_method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
        "client_ip": client_ip or "unknown",
    }

    if extra:
        # Sanitize extra data before logging
        log_data.update(sanitize_log_data(extra))

    message = f'{log_data["client_ip"]} - "{method} {path} HTTP/1.1" {status_code}'

    # Choose log level based on status code
    if status_code >= 500:
        logger.error(message, extra=log_data)
    elif status_code >= 400:
        logger.warning(message, extra=log_data)
    else:
        logger.info(message, extra=log_data)
