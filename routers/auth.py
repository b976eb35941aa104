from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import OAuth2PasswordRequestForm
from utils.deps import db_dependency, user_dependency, session_manager_dependency
from starlette import status
from schemas.auth_schemas import (Token, CreateUserRequest, RevokeTokenRequest,
RefreshTokenRequest, LogoutAllResponse)
from services.auth_service import AuthService
from services.session_manager import SessionError, SessionResult
from middleware.rate_limiter import limiter
from utils.logger import get_logger

# Setup logger
logger = get_logger(__name__)


router = APIRouter(
    prefix="/auth",
    tags=["auth"]
)

# Not found, expired, revoked and reused tokens all look the same to clients
INVALID_SESSION_DETAIL = "Invalid or expired session"


def raise_for_session_error(result: SessionResult):
    """
    Maps a failed SessionResult to an HTTP error.

    Storage failures are 503 (retryable). Every other failure is the same
    401 so responses cannot be used to tell the cases apart.
    """
    if result.ok:
        return

    if result.error == SessionError.STORE_UNAVAILABLE:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Session service temporarily unavailable",
        headers={"Retry-After": "5"})

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
    detail=INVALID_SESSION_DETAIL)


def token_response(result: SessionResult, user=None) -> dict:
    raise_for_session_error(result)
    pair = result.value
    return {
        "access_token": pair.access_token,
        "refresh_token": pair.refresh_token,
        "token_type": pair.token_type,
        "email": user.email if user else None,
        "first_name": user.first_name if user else None
    }


@router.post("/", response_model=Token, status_code=status.HTTP_201_CREATED)
@limiter.limit("3/minute")
async def create_user(request: Request, body: CreateUserRequest, db: db_dependency,
    sessions: session_manager_dependency):
    user = AuthService.create_user(body, db)

    logger.info(
        "User registered successfully",
        extra={"user_id": user.id, "email": user.email}
    )

    return token_response(sessions.create_session(user.id), user)


@router.post("/token", response_model=Token)
@limiter.limit("5/minute")
async def login_for_access_token(request: Request, db: db_dependency,
    sessions: session_manager_dependency, form_data: OAuth2PasswordRequestForm = Depends()):
    user = AuthService.authenticate_user(form_data.username, form_data.password, db)

    token = token_response(sessions.create_session(user.id), user)

    # Log successful login
    logger.info(
        "User logged in successfully",
        extra={"user_id": user.id, "email": user.email}
    )

    return token


@router.post("/refresh", response_model=Token)
@limiter.limit("10/minute")
async def refresh_token(request: Request, body: RefreshTokenRequest, db: db_dependency,
    sessions: session_manager_dependency):
    """
    Exchange a refresh token for a new access + refresh token pair.
    The presented refresh token stops working.
    """
    result = sessions.rotate(body.refresh_token)

    if result.error == SessionError.BREACH_DETECTED:
        logger.warning("Refresh token reuse - user must log in again on all devices")
    elif not result.ok:
        logger.info("Token refresh rejected", extra={"reason": result.error.value})

    user = AuthService.get_active_user_by_id(db, result.value.user_id) if result.ok else None
    token = token_response(result, user)

    logger.info("Access token refreshed", extra={"user_id": result.value.user_id})

    return token


@router.post("/logout", status_code=status.HTTP_200_OK)
@limiter.limit("10/minute")
async def logout(request: Request, body: RevokeTokenRequest, sessions: session_manager_dependency):
    """
    Revoke refresh token (logout).
    """
    raise_for_session_error(sessions.revoke(body.refresh_token))

    logger.info("User logged out")

    return {"message": "Logged out successfully"}


@router.post("/logout-all", response_model=LogoutAllResponse)
@limiter.limit("5/minute")
async def logout_everywhere(request: Request, user: user_dependency, sessions: session_manager_dependency):
    """
    Revoke every refresh token of the current user (log out on all devices).
    """
    result = sessions.revoke_all_for_user(user.user_id)
    raise_for_session_error(result)

    logger.info(
        "User logged out everywhere",
        extra={"user_id": user.user_id, "revoked_count": result.value}
    )

    return {"message": "Logged out from all sessions", "revoked_sessions": result.value}
