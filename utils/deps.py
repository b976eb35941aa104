from core.database import SessionLocal
from datetime import timedelta
from functools import lru_cache
from typing import Annotated
from fastapi import Depends, HTTPException, Header
from sqlalchemy.orm import Session
from starlette import status
from core.clock import SystemClock
from core.config import settings
from services.access_token_codec import AccessTokenCodec
from services.auth_service import AuthService
from services.authenticator import Authenticator, Principal
from services.refresh_token_store import SqlAlchemyRefreshTokenStore
from services.session_manager import SessionManager

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

db_dependency = Annotated[Session, Depends(get_db)]


@lru_cache
def get_clock() -> SystemClock:
    return SystemClock()


def build_access_token_codec(clock) -> AccessTokenCodec:
    return AccessTokenCodec(
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        lifetime=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        clock=clock
    )


def build_session_manager(db: Session, clock=None) -> SessionManager:
    """
    Wires a SessionManager over the SQL store for one database session.
    Also used by the housekeeping thread, which has no request scope.
    """
    clock = clock or get_clock()
    return SessionManager(
        store=SqlAlchemyRefreshTokenStore(db),
        codec=build_access_token_codec(clock),
        clock=clock,
        refresh_lifetime=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    )


def get_access_token_codec(clock: Annotated[SystemClock, Depends(get_clock)]) -> AccessTokenCodec:
    return build_access_token_codec(clock)


def get_session_manager(db: db_dependency, clock: Annotated[SystemClock, Depends(get_clock)]) -> SessionManager:
    return build_session_manager(db, clock)

session_manager_dependency = Annotated[SessionManager, Depends(get_session_manager)]


def get_authenticator(db: db_dependency,
                      codec: Annotated[AccessTokenCodec, Depends(get_access_token_codec)]) -> Authenticator:
    def lookup(user_id: str):
        user = AuthService.get_active_user_by_id(db=db, user_id=user_id)
        if user is None:
            return None
        return Principal(user_id=user.id, email=user.email)

    return Authenticator(codec=codec, user_lookup=lookup)


def get_current_user(authenticator: Annotated[Authenticator, Depends(get_authenticator)],
                     authorization: Annotated[str | None, Header()] = None) -> Principal:
    if authorization is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Not authenticated",
                            headers={"WWW-Authenticate": "Bearer"})

    principal = authenticator.authenticate(authorization)
    if not principal.is_authenticated:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Could not validate credentials.",
                            headers={"WWW-Authenticate": "Bearer"})

    return principal


user_dependency = Annotated[Principal, Depends(get_current_user)]
