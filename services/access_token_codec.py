from datetime import datetime, timezone, timedelta
from jose import jwt, JWTError
from core.clock import SystemClock
from utils.logger import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"


class AccessTokenCodec:
    """
    Issues and verifies short-lived, self-contained access tokens (JWT).

    The signing key, algorithm, lifetime and clock are all passed in, so the
    same codec verifies whatever it issued and tests can swap in a frozen
    clock or a throwaway key.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256",
                 lifetime: timedelta = timedelta(minutes=15), clock=None):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        if lifetime <= timedelta(0):
            raise ValueError("lifetime must be positive")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.lifetime = lifetime
        self.clock = clock or SystemClock()

    def issue(self, user_id: str) -> str:
        """
        Creates a signed access token for `user_id`.

        Args:
            user_id: The user's identifier

        Returns:
            JWT access token string, valid for `lifetime` from now
        """
        now = self.clock.now()
        expire = now + self.lifetime

        payload = {
            "sub": str(user_id),
            "type": ACCESS_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int(expire.timestamp()),
        }

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token) -> str | None:
        """
        Checks signature, token type and expiry.

        Args:
            token: Bearer token as presented by the client

        Returns:
            The user id if the token is valid, otherwise None. Never raises
            for malformed input.
        """
        if not isinstance(token, str) or not token:
            return None

        try:
            # Expiry is checked below against the injected clock
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except (JWTError, UnicodeError):
            # Lone surrogates cannot be encoded before the signature check
            return None

        if not isinstance(payload, dict):
            return None

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            logger.debug("Access token rejected - wrong token type")
            return None

        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            return None

        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return None

        try:
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

        if expires_at <= self.clock.now():
            return None

        return user_id
