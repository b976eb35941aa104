import pytest
from datetime import timedelta
from sqlalchemy.exc import OperationalError
from core.exceptions import StoreUnavailableError
from models.refresh_tokens import RefreshToken
from services.refresh_token_store import SqlAlchemyRefreshTokenStore, RefreshTokenRecord
from services.session_manager import SessionManager, SessionError
from utils.hashing import hash_token

from tests.conftest import TestingSessionLocal, create_user


@pytest.fixture
def sql_manager(session, codec, clock):
    return SessionManager(
        store=SqlAlchemyRefreshTokenStore(session),
        codec=codec,
        clock=clock,
        refresh_lifetime=timedelta(days=7)
    )


def test_create_session_persists_hash(session, sql_manager, active_user):
    pair = sql_manager.create_session(active_user.id).value

    db_token = session.query(RefreshToken).filter(
        RefreshToken.token_hash == hash_token(pair.refresh_token)
    ).first()

    assert db_token is not None
    assert db_token.user_id == active_user.id
    assert db_token.revoked is False
    # raw secret is never stored
    assert session.query(RefreshToken).filter(
        RefreshToken.token_hash == pair.refresh_token
    ).first() is None


def test_validate_reads_back_utc(sql_manager, active_user, clock):
    pair = sql_manager.create_session(active_user.id).value

    record = sql_manager.validate(pair.refresh_token).value

    assert record.expires_at == clock.now() + timedelta(days=7)
    assert record.issued_at == clock.now()


def test_refresh_token_rotation(session, sql_manager, active_user):
    old = sql_manager.create_session(active_user.id).value

    new = sql_manager.rotate(old.refresh_token).value

    old_db_token = session.query(RefreshToken).filter(
        RefreshToken.token_hash == hash_token(old.refresh_token)
    ).first()
    new_db_token = session.query(RefreshToken).filter(
        RefreshToken.token_hash == hash_token(new.refresh_token)
    ).first()

    assert old_db_token.revoked is True
    assert new_db_token is not None
    assert new_db_token.user_id == active_user.id
    assert new_db_token.revoked is False


def test_reuse_revokes_everything(session, sql_manager, active_user):
    s1 = sql_manager.create_session(active_user.id).value.refresh_token
    sql_manager.create_session(active_user.id)
    sql_manager.create_session(active_user.id)

    s2 = sql_manager.rotate(s1).value.refresh_token
    result = sql_manager.rotate(s1)

    assert result.error == SessionError.BREACH_DETECTED
    user_tokens = session.query(RefreshToken).filter(
        RefreshToken.user_id == active_user.id
    ).all()
    assert len(user_tokens) == 4
    assert all(t.revoked for t in user_tokens)
    assert sql_manager.validate(s2).error == SessionError.REVOKED


def test_revoke_all_tokens(session, sql_manager, active_user):
    for _ in range(3):
        sql_manager.create_session(active_user.id)

    assert sql_manager.revoke_all_for_user(active_user.id).value == 3
    assert sql_manager.revoke_all_for_user(active_user.id).value == 0

    store = SqlAlchemyRefreshTokenStore(session)
    assert all(r.revoked for r in store.find_all_for_user(active_user.id))


def test_expired_token_fails_refresh(session, sql_manager, active_user, clock):
    token = sql_manager.create_session(active_user.id).value.refresh_token
    other = sql_manager.create_session(active_user.id).value.refresh_token
    clock.advance(days=7, seconds=1)

    assert sql_manager.rotate(token).error == SessionError.EXPIRED

    db_token = session.query(RefreshToken).filter(
        RefreshToken.token_hash == hash_token(other)
    ).first()
    assert db_token.revoked is False


def test_revoked_flag_never_resets(session, active_user, clock):
    store = SqlAlchemyRefreshTokenStore(session)
    with store.transaction():
        record = store.save(RefreshTokenRecord(
            token_hash=hash_token("s"),
            user_id=active_user.id,
            issued_at=clock.now(),
            expires_at=clock.now() + timedelta(days=1),
        ))
        assert store.revoke_if_active(record.id) is True
        assert store.revoke_if_active(record.id) is False

        record.revoked = False
        store.save(record)

    assert store.find_by_hash(hash_token("s")).revoked is True


def test_delete_expired_and_revoked(session, sql_manager, active_user, clock):
    dead = sql_manager.create_session(active_user.id).value.refresh_token
    sql_manager.revoke(dead)
    sql_manager.create_session(active_user.id)
    clock.advance(days=5)
    alive = sql_manager.create_session(active_user.id).value.refresh_token
    clock.advance(days=2, seconds=1)

    assert sql_manager.purge_expired().value == 2

    remaining = session.query(RefreshToken).all()
    assert [t.token_hash for t in remaining] == [hash_token(alive)]


def test_rotation_losing_race_is_reuse(session, codec, clock, active_user):
    """
    Another worker rotates the same secret between our read and our write.
    Exactly one rotation may succeed.
    """
    rival_db = TestingSessionLocal()
    rival = SessionManager(store=SqlAlchemyRefreshTokenStore(rival_db), codec=codec, clock=clock)
    rival_results = []

    class RacingStore(SqlAlchemyRefreshTokenStore):
        def find_by_hash(self, token_hash):
            record = super().find_by_hash(token_hash)
            if record is not None and not rival_results:
                rival_results.append(rival.rotate(secret))
            return record

    manager = SessionManager(store=RacingStore(session), codec=codec, clock=clock)
    secret = manager.create_session(active_user.id).value.refresh_token

    try:
        result = manager.rotate(secret)
    finally:
        rival_db.close()

    assert rival_results[0].ok
    assert result.error == SessionError.BREACH_DETECTED

    session.expire_all()
    tokens = session.query(RefreshToken).filter(RefreshToken.user_id == active_user.id).all()
    assert len(tokens) == 2
    assert all(t.revoked for t in tokens)


def test_database_errors_become_store_unavailable(session, monkeypatch):
    store = SqlAlchemyRefreshTokenStore(session)

    def explode(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "query", explode)

    with pytest.raises(StoreUnavailableError) as exc_info:
        store.find_by_hash(hash_token("anything"))

    assert "find_by_hash" in str(exc_info.value)
    assert hash_token("anything") not in str(exc_info.value)


def test_manager_reports_store_unavailable(session, codec, clock, monkeypatch):
    manager = SessionManager(store=SqlAlchemyRefreshTokenStore(session), codec=codec, clock=clock)

    def explode(*args, **kwargs):
        raise OperationalError("UPDATE", {}, Exception("disk I/O error"))

    monkeypatch.setattr(session, "query", explode)

    result = manager.rotate("whatever")

    assert result.error == SessionError.STORE_UNAVAILABLE
    assert result.retryable


def test_second_user_unaffected(session, sql_manager, active_user):
    other_user = create_user(session, email="other@example.com")
    mine = sql_manager.create_session(active_user.id).value.refresh_token
    theirs = sql_manager.create_session(other_user.id).value.refresh_token

    sql_manager.rotate(mine)
    sql_manager.rotate(mine)

    assert sql_manager.validate(theirs).ok
