from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SAEnum, ForeignKey, Integer, String

from twofactor.models.base import Base


class ChallengePurpose(str, Enum):
    LOGIN = "LOGIN"
    ENROLLMENT = "ENROLLMENT"


class Challenge(Base):
    """Server-side half of a challenge or enrollment token; ``id`` is the token's jti."""

    __tablename__ = "challenges"

    id = Column(String, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    purpose = Column(SAEnum(ChallengePurpose), default=ChallengePurpose.LOGIN, nullable=False)
    tries = Column(Integer, nullable=False, default=0)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    # same compare-and-swap as accounts: racing tries/consumed writes raise StaleDataError
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
