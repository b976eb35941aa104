from core.database import Base
from sqlalchemy import Column, Boolean, DateTime, String, Integer, ForeignKey
from sqlalchemy.orm import relationship

class RefreshToken(Base):
    """
    Stores refresh tokens for user sessions.

    Only the SHA-256 digest of the secret handed to the client is kept, so a
    copy of this table cannot be replayed. Rows are never updated except to
    flip `revoked` to True, and are deleted in batches once dead.
    """
    __tablename__ = "refresh_tokens"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    #relationships
    user = relationship("User", back_populates="refresh_tokens")

    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked = Column(Boolean, default=False, nullable=False)
