from fastapi import APIRouter, HTTPException, status, Request
from utils.deps import user_dependency, db_dependency
from schemas.auth_schemas import UserResponse
from services.auth_service import AuthService
from middleware.rate_limiter import limiter
from utils.logger import get_logger

# Setup logger
logger = get_logger(__name__)


router = APIRouter(
    prefix="/users",
    tags=["users"]
)

@router.get("/me", response_model=UserResponse, status_code=status.HTTP_200_OK)
@limiter.limit("30/minute")
async def get_user_info(request: Request, user: user_dependency, db: db_dependency):
    """
    Get current user info (protected endpoint).
    """
    model = AuthService.get_active_user_by_id(db=db, user_id=user.user_id)

    if not model:
        raise HTTPException(status_code=404, detail="User not found")

    return {
        "id": model.id,
        "email": model.email,
        "first_name": model.first_name,
        "last_name": model.last_name
    }
