from utils.hashing import verify_password, get_password_hash
from models.users import User
from schemas.auth_schemas import CreateUserRequest
from sqlalchemy.orm import Session
from fastapi import HTTPException
from starlette import status
from utils.logger import get_logger

logger = get_logger(__name__)

class AuthService:
    """
    Credential checks and user records. Sessions are handed to the
    SessionManager once a user is known to be who they claim.
    """

    @staticmethod
    def create_user(request: CreateUserRequest, db: Session):
        """
        Creates a new, active user.

        Flow:
        1. Check if email already exists
        2. Hash password
        3. Create user
        """
        email = request.email.lower().strip()
        existing_user = db.query(User).filter(User.email == email).first()
        if existing_user:
            # Log duplicate registration attempt
            logger.warning(
                "Registration attempt with existing email",
                extra={"email": email}
            )
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        model = User(
            email=email,
            first_name=request.first_name,
            last_name=request.last_name,
            hashed_password=get_password_hash(request.password),
            is_active=True
        )

        db.add(model)
        db.commit()
        db.refresh(model)
        return model


    @staticmethod
    def authenticate_user(email: str, password: str, db: Session):
        email = email.lower().strip()
        user = db.query(User).filter(User.email == email).first()

        if not user:
            logger.warning(
            "Login failed - user not found",
            extra={"email": email}
            )
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate user.")

        if not user.is_active:
            logger.warning(
            "Login failed - inactive account",
            extra={"email": email}
            )
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate user.")

        if not verify_password(password, user.hashed_password):
            # Log failed password verification
            logger.warning(
                "Login failed - invalid password",
                extra={"user_id": user.id, "email": email}
            )
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate user.")

        # Log successful authentication
        logger.debug(
            "User authenticated successfully",
            extra={"user_id": user.id, "email": email}
        )

        return user

    @staticmethod
    def get_active_user_by_id(db: Session, user_id: str) -> User | None:
        model = db.query(User).filter(User.id == user_id, User.is_active == True).one_or_none()

        return model
