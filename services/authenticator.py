from dataclasses import dataclass
from typing import Callable, Optional
from services.access_token_codec import AccessTokenCodec
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    """
    Identity resolved from a valid access token.
    """
    user_id: Optional[str]
    email: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


ANONYMOUS = Principal(user_id=None)


class Authenticator:
    """
    Turns an `Authorization` header value into a Principal.

    Any failure (missing header, wrong scheme, bad or expired token, unknown
    user) gives ANONYMOUS. The caller decides whether anonymous is enough.
    """

    def __init__(self, codec: AccessTokenCodec,
                 user_lookup: Callable[[str], Optional[Principal]],
                 scheme: str = "Bearer"):
        self.codec = codec
        self.user_lookup = user_lookup
        self.scheme = scheme

    def extract_token(self, header_value) -> Optional[str]:
        if not isinstance(header_value, str):
            return None

        scheme, _, token = header_value.strip().partition(" ")
        if scheme.lower() != self.scheme.lower():
            return None

        token = token.strip()
        return token or None

    def authenticate(self, header_value) -> Principal:
        token = self.extract_token(header_value)
        if token is None:
            return ANONYMOUS

        user_id = self.codec.verify(token)
        if user_id is None:
            logger.debug("Access token rejected")
            return ANONYMOUS

        try:
            principal = self.user_lookup(user_id)
        except Exception as e:
            # Lookup is an external collaborator; a broken one means no identity
            logger.error(
                f"User lookup failed: {type(e).__name__}",
                extra={"user_id": user_id, "error_type": type(e).__name__},
                exc_info=True
            )
            return ANONYMOUS

        if principal is None or not principal.is_authenticated:
            logger.info("Valid access token for unknown or inactive user", extra={"user_id": user_id})
            return ANONYMOUS

        return principal
