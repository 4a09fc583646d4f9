from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SAEnum, ForeignKey, Integer, String

from twofactor.models.base import Base


class TokenStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class IssuedToken(Base):
    __tablename__ = "issued_tokens"

    id = Column(String, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SAEnum(TokenStatus), default=TokenStatus.ACTIVE, nullable=False)
    two_factor_verified = Column(Boolean, default=False, nullable=False)

    issued_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
