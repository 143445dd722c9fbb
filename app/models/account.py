"""Accounts: active users of STO Manager."""
import enum
import uuid

from sqlalchemy import Column, String, Enum as SQLEnum, DateTime, Boolean
from sqlalchemy.sql import func
from app.database import Base


class AccountRole(str, enum.Enum):
    super_user = "SUPER_USER"
    admin_user = "ADMIN_USER"


# Role allowed to manage users and ingest data
ELEVATED_ROLE = AccountRole.super_user


def new_id() -> str:
    return str(uuid.uuid4())


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(SQLEnum(AccountRole), nullable=False)

    # Soft delete: accounts are deactivated, never removed
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    last_login = Column(DateTime(timezone=True), nullable=True)
