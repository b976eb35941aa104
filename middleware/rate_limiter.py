from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from core.config import settings
from utils.deps import build_access_token_codec, get_clock

def get_user_id(request: Request):
    """
    Rate-limit key: the verified user id when a valid bearer token is sent,
    otherwise the client address.
    """
    header = request.headers.get("Authorization")
    if header and header.lower().startswith("bearer "):
        user_id = build_access_token_codec(get_clock()).verify(header[7:].strip())
        if user_id:
            return f"user:{user_id}"

    return get_remote_address(request)

limiter = Limiter(
    key_func=get_user_id,
    default_limits=["200/hour"],
    enabled=settings.ENV != "testing"
)
