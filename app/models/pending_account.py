"""Signup requests: an Account is created only after email verification (and approval, when an approver is set)."""
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Boolean, Enum as SQLEnum
from sqlalchemy.sql import func

from app.database import Base
from app.models.account import AccountRole, new_id


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PendingAccount(Base):
    __tablename__ = "pending_accounts"

    # Opaque id doubles as the approval-link token
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(AccountRole), nullable=False)

    approver_email = Column(String(255), nullable=True)

    otp_verified = Column(Boolean, default=False, nullable=False)
    admin_approved = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        return as_utc(self.expires_at) <= (now or datetime.now(timezone.utc))
