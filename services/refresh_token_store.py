"""
Persistence for refresh-token records.

Stores only keep data; every session rule (single use, breach containment,
expiry) lives in the session manager.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from functools import wraps
from typing import Iterator, Optional
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from core.exceptions import StoreUnavailableError
from models.refresh_tokens import RefreshToken
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RefreshTokenRecord:
    """
    One issued refresh token, identified by the digest of its secret.
    """
    token_hash: str
    user_id: str
    issued_at: datetime
    expires_at: datetime
    revoked: bool = False
    id: Optional[int] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and not self.is_expired(now)


class RefreshTokenStore(ABC):

    @abstractmethod
    def transaction(self):
        """Context manager for one unit of work: commit on exit, roll back on error."""

    @abstractmethod
    def save(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        """Persist a record, assigning its id if new."""

    @abstractmethod
    def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        ...

    @abstractmethod
    def revoke_if_active(self, record_id: int) -> bool:
        """
        Flip `revoked` to True only if it is still False.

        Returns True if this call did the flip. Two callers racing on the same
        record get exactly one True.
        """

    @abstractmethod
    def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every non-revoked record of the user; returns how many changed."""

    @abstractmethod
    def delete_expired_and_revoked(self, now: datetime) -> int:
        ...

    @abstractmethod
    def find_all_for_user(self, user_id: str) -> list[RefreshTokenRecord]:
        ...


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """
    Dict-backed store, safe to share between threads.

    Single-use is enforced per record by `revoke_if_active`. The re-entrant
    lock is additionally held for a whole transaction so that a rollback can
    restore the snapshot taken on entry without clobbering another thread's
    writes. This serializes transactions, which is fine for tests and single
    process use; the SQL store relies on row-level updates instead.
    Records handed out are copies.
    """

    def __init__(self):
        self._records: dict[str, RefreshTokenRecord] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = {h: replace(r) for h, r in self._records.items()}
            try:
                yield
            except BaseException:
                self._records = snapshot
                raise

    def save(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        with self._lock:
            stored = replace(record)
            if stored.id is None:
                stored.id = next(self._ids)
            existing = self._records.get(stored.token_hash)
            if existing is not None and existing.revoked:
                stored.revoked = True
            self._records[stored.token_hash] = stored
            return replace(stored)

    def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        with self._lock:
            record = self._records.get(token_hash)
            return replace(record) if record else None

    def revoke_if_active(self, record_id: int) -> bool:
        with self._lock:
            for record in self._records.values():
                if record.id == record_id:
                    if record.revoked:
                        return False
                    record.revoked = True
                    return True
            return False

    def revoke_all_for_user(self, user_id: str) -> int:
        with self._lock:
            count = 0
            for record in self._records.values():
                if record.user_id == user_id and not record.revoked:
                    record.revoked = True
                    count += 1
            return count

    def delete_expired_and_revoked(self, now: datetime) -> int:
        with self._lock:
            dead = [h for h, r in self._records.items() if r.revoked or r.is_expired(now)]
            for token_hash in dead:
                del self._records[token_hash]
            return len(dead)

    def find_all_for_user(self, user_id: str) -> list[RefreshTokenRecord]:
        with self._lock:
            records = [replace(r) for r in self._records.values() if r.user_id == user_id]
            return sorted(records, key=lambda r: r.id)


def _translate_errors(func):
    """Turn any SQLAlchemy failure into StoreUnavailableError."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                f"Refresh token store failure: {type(e).__name__}",
                extra={"operation": func.__name__, "error_type": type(e).__name__},
                exc_info=True
            )
            raise StoreUnavailableError(func.__name__, type(e).__name__) from e
    return wrapper


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlAlchemyRefreshTokenStore(RefreshTokenStore):
    """
    Store over the `refresh_tokens` table.

    Methods only flush; `transaction()` owns the single commit so a rotation
    either fully happens or not at all.
    """

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreUnavailableError("commit", type(e).__name__) from e
        except BaseException:
            self.db.rollback()
            raise

    @staticmethod
    def _to_record(row: RefreshToken) -> RefreshTokenRecord:
        return RefreshTokenRecord(
            id=row.id,
            token_hash=row.token_hash,
            user_id=row.user_id,
            issued_at=_as_utc(row.issued_at),
            expires_at=_as_utc(row.expires_at),
            revoked=bool(row.revoked),
        )

    @_translate_errors
    def save(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        if record.id is not None:
            row = self.db.get(RefreshToken, record.id)
        else:
            row = None

        if row is None:
            row = RefreshToken(
                user_id=record.user_id,
                token_hash=record.token_hash,
                issued_at=record.issued_at,
                expires_at=record.expires_at,
                revoked=record.revoked,
            )
            self.db.add(row)
        elif record.revoked:
            # revoked never goes back to False
            row.revoked = True

        self.db.flush()
        return self._to_record(row)

    @_translate_errors
    def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        row = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == token_hash
        ).first()
        return self._to_record(row) if row else None

    @_translate_errors
    def revoke_if_active(self, record_id: int) -> bool:
        rows = self.db.query(RefreshToken).filter(
            RefreshToken.id == record_id,
            RefreshToken.revoked == False
        ).update({"revoked": True})
        return rows == 1

    @_translate_errors
    def revoke_all_for_user(self, user_id: str) -> int:
        return self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked == False
        ).update({"revoked": True})

    @_translate_errors
    def delete_expired_and_revoked(self, now: datetime) -> int:
        return self.db.query(RefreshToken).filter(
            or_(RefreshToken.revoked == True, RefreshToken.expires_at <= now)
        ).delete(synchronize_session="fetch")

    @_translate_errors
    def find_all_for_user(self, user_id: str) -> list[RefreshTokenRecord]:
        rows = self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id
        ).order_by(RefreshToken.id).all()
        return [self._to_record(row) for row in rows]
