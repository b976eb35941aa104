from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Generic, Optional, TypeVar
from core.clock import SystemClock
from core.exceptions import StoreUnavailableError
from services.access_token_codec import AccessTokenCodec
from services.refresh_token_store import RefreshTokenRecord, RefreshTokenStore
from utils.hashing import hash_token, digests_match
from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# 32 random bytes = 256 bits of entropy per refresh secret
REFRESH_SECRET_BYTES = 32


def _well_formed(raw_secret) -> bool:
    return isinstance(raw_secret, str) and bool(raw_secret.strip())


class SessionError(str, Enum):
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    REVOKED = "revoked"
    BREACH_DETECTED = "breach_detected"
    INVALID_TOKEN = "invalid_token"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class SessionResult(Generic[T]):
    """
    Outcome of a session operation: either `value` or `error` is meaningful.

    Security failures (not found, expired, revoked, breach) are ordinary
    results. Only STORE_UNAVAILABLE is worth retrying.
    """
    value: Optional[T] = None
    error: Optional[SessionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        return self.error == SessionError.STORE_UNAVAILABLE

    @classmethod
    def success(cls, value=None) -> "SessionResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: SessionError) -> "SessionResult":
        return cls(error=error)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    user_id: str
    token_type: str = "bearer"


class SessionManager:
    """
    Handles the refresh-token lifecycle: creation, validation, rotation with
    reuse detection, and revocation.

    A refresh secret is good for exactly one rotation. Presenting a secret
    that was already revoked means a stale copy is in someone else's hands,
    so every session of that user is killed.
    """

    def __init__(self, store: RefreshTokenStore, codec: AccessTokenCodec,
                 clock=None, refresh_lifetime: timedelta = timedelta(days=7)):
        if refresh_lifetime <= timedelta(0):
            raise ValueError("refresh_lifetime must be positive")

        self.store = store
        self.codec = codec
        self.clock = clock or SystemClock()
        self.refresh_lifetime = refresh_lifetime

    def create_session(self, user_id: str) -> SessionResult[TokenPair]:
        """
        Issues an access token + refresh secret pair for a freshly
        authenticated user.

        The raw refresh secret is only ever present in the returned pair.
        """
        try:
            with self.store.transaction():
                pair = self._issue(user_id)
        except StoreUnavailableError:
            return SessionResult.failure(SessionError.STORE_UNAVAILABLE)

        logger.info("Session created", extra={"user_id": user_id})
        return SessionResult.success(pair)

    def validate(self, raw_secret: str) -> SessionResult[RefreshTokenRecord]:
        """
        Looks up a refresh secret without changing anything.
        """
        if not _well_formed(raw_secret):
            return SessionResult.failure(SessionError.NOT_FOUND)

        try:
            with self.store.transaction():
                record = self._lookup(raw_secret)
        except StoreUnavailableError:
            return SessionResult.failure(SessionError.STORE_UNAVAILABLE)

        if record is None:
            return SessionResult.failure(SessionError.NOT_FOUND)

        if record.revoked:
            return SessionResult.failure(SessionError.REVOKED)

        if record.is_expired(self.clock.now()):
            return SessionResult.failure(SessionError.EXPIRED)

        return SessionResult.success(record)

    def rotate(self, raw_secret: str) -> SessionResult[TokenPair]:
        """
        Exchanges a refresh secret for a new pair and retires the old one.

        Flow (single transaction):
        1. Unknown secret -> NOT_FOUND
        2. Already revoked -> revoke all the owner's sessions, BREACH_DETECTED
        3. Expired -> EXPIRED (no mass revocation)
        4. Compare-and-set the record to revoked; losing that race is reuse
           as well. Winning issues the replacement pair.
        """
        if not _well_formed(raw_secret):
            return SessionResult.failure(SessionError.NOT_FOUND)

        try:
            with self.store.transaction():
                record = self._lookup(raw_secret)

                if record is None:
                    logger.warning("Refresh failed - token not found")
                    return SessionResult.failure(SessionError.NOT_FOUND)

                if record.revoked:
                    self._contain_breach(record.user_id)
                    return SessionResult.failure(SessionError.BREACH_DETECTED)

                if record.is_expired(self.clock.now()):
                    logger.info(
                        "Refresh failed - token expired",
                        extra={"user_id": record.user_id}
                    )
                    return SessionResult.failure(SessionError.EXPIRED)

                if not self.store.revoke_if_active(record.id):
                    # Someone rotated this secret between our read and write
                    self._contain_breach(record.user_id)
                    return SessionResult.failure(SessionError.BREACH_DETECTED)

                pair = self._issue(record.user_id)
        except StoreUnavailableError:
            return SessionResult.failure(SessionError.STORE_UNAVAILABLE)

        logger.info("Refresh token rotated", extra={"user_id": record.user_id})
        return SessionResult.success(pair)

    def revoke(self, raw_secret: str) -> SessionResult[None]:
        """
        Revokes a single refresh secret (logout). Unknown or already revoked
        secrets are not an error.
        """
        try:
            with self.store.transaction():
                record = self._lookup(raw_secret)
                if record is not None and not record.revoked:
                    if self.store.revoke_if_active(record.id):
                        logger.info("Refresh token revoked", extra={"user_id": record.user_id})
        except StoreUnavailableError:
            return SessionResult.failure(SessionError.STORE_UNAVAILABLE)

        return SessionResult.success(None)

    def revoke_all_for_user(self, user_id: str) -> SessionResult[int]:
        """
        Revokes every outstanding refresh token of a user (logout everywhere).

        Returns the number of tokens that were still live.
        """
        try:
            with self.store.transaction():
                count = self.store.revoke_all_for_user(user_id)
        except StoreUnavailableError:
            return SessionResult.failure(SessionError.STORE_UNAVAILABLE)

        logger.info(
            "All refresh tokens revoked for user",
            extra={"user_id": user_id, "revoked_count": count}
        )
        return SessionResult.success(count)

    def purge_expired(self) -> SessionResult[int]:
        try:
            with self.store.transaction():
                count = self.store.delete_expired_and_revoked(self.clock.now())
        except StoreUnavailableError:
            return SessionResult.failure(SessionError.STORE_UNAVAILABLE)

        logger.debug("Dead refresh tokens purged", extra={"deleted_count": count})
        return SessionResult.success(count)

    def _issue(self, user_id: str) -> TokenPair:
        now = self.clock.now()
        raw_secret = self.clock.random_secret(REFRESH_SECRET_BYTES)

        self.store.save(RefreshTokenRecord(
            token_hash=hash_token(raw_secret),
            user_id=user_id,
            issued_at=now,
            expires_at=now + self.refresh_lifetime,
        ))

        return TokenPair(
            access_token=self.codec.issue(user_id),
            refresh_token=raw_secret,
            user_id=user_id,
        )

    def _lookup(self, raw_secret: str) -> Optional[RefreshTokenRecord]:
        if not _well_formed(raw_secret):
            return None

        token_hash = hash_token(raw_secret)
        record = self.store.find_by_hash(token_hash)
        if record is None or not digests_match(record.token_hash, token_hash):
            return None
        return record

    def _contain_breach(self, user_id: str) -> None:
        count = self.store.revoke_all_for_user(user_id)
        logger.warning(
            "Refresh token reuse detected - all sessions revoked",
            extra={"user_id": user_id, "revoked_count": count}
        )
