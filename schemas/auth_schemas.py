from pydantic import BaseModel, EmailStr, field_validator
import re

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    email: str | None = None
    first_name: str | None = None


class CreateUserRequest(BaseModel):
    email: EmailStr
    first_name: str
    last_name: str
    password: str

    @field_validator('password')
    @classmethod
    def validate_password(cls, value):
        """
        Password must be at least 8 characters and contain:
        - At least one letter
        - At least one digit
        """
        if len(value) < 8:
            raise ValueError('Password must be at least 8 characters')

        if not re.search(r'[A-Za-z]', value):
            raise ValueError('Password must contain at least one letter')

        if not re.search(r'\d', value):
            raise ValueError('Password must contain at least one digit')

        return value


class RefreshTokenRequest(BaseModel):
    refresh_token: str

    @field_validator('refresh_token')
    @classmethod
    def validate_token(cls, value):
        if not value or not value.strip():
            raise ValueError('Refresh token cannot be empty')
        return value.strip()


class RevokeTokenRequest(RefreshTokenRequest):
    pass


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None


class LogoutAllResponse(BaseModel):
    message: str
    revoked_sessions: int
