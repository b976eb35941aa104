import uuid
from core.database import Base
from sqlalchemy import (Column, String, Boolean)
from sqlalchemy.orm import relationship
from models.mixins import CreatedAtMixin

class User(Base, CreatedAtMixin):
    __tablename__ = "users"

    #pk
    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))

    #relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", passive_deletes=True)

    email = Column(String, unique=True, nullable=False, index=True)
    first_name = Column(String)
    last_name = Column(String)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
