"""Account store: active users, direct creation by elevated users, soft delete, login."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import ConflictError, NotFoundError, ValidationFailed
from app.models.account import Account, AccountRole
from app.services.auth import get_password_hash, normalize_email, verify_password


class AccountStore:
    def __init__(self, db: Session):
        self.db = db

    def get_by_email(self, email: str) -> Account | None:
        return self.db.query(Account).filter(Account.email == normalize_email(email)).first()

    def get_active(self, account_id: str) -> Account | None:
        return self.db.query(Account).filter(Account.id == account_id, Account.is_active.is_(True)).first()

    def list_active(self) -> list[Account]:
        return (
            self.db.query(Account)
            .filter(Account.is_active.is_(True))
            .order_by(Account.created_at.desc())
            .all()
        )

    def create(
        self,
        email: str,
        name: str,
        password: str,
        role: AccountRole,
        *,
        created_by: str | None = None,
        commit: bool = True,
    ) -> Account:
        email = normalize_email(email)
        if self.get_by_email(email):
            raise ConflictError("User with this email already exists", code="USER_EXISTS")
        account = Account(
            email=email,
            name=name.strip(),
            hashed_password=get_password_hash(password),
            role=role,
            is_active=True,
            created_by=created_by,
        )
        self.db.add(account)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("User with this email already exists", code="USER_EXISTS")
        if commit:
            self.db.commit()
            self.db.refresh(account)
        return account

    def deactivate(self, account_id: str, *, actor_id: str, commit: bool = True) -> Account:
        """Soft delete: accounts keep their row so history stays referentially intact."""
        if account_id == actor_id:
            raise ValidationFailed("Cannot delete your own account", code="CANNOT_DELETE_SELF")
        account = self.get_active(account_id)
        if account is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        account.is_active = False
        account.updated_at = datetime.now(timezone.utc)
        if commit:
            self.db.commit()
            self.db.refresh(account)
        return account

    def authenticate(self, email: str, password: str) -> Account | None:
        account = self.get_by_email(email)
        if not account or not account.is_active:
            return None
        if not verify_password(password, account.hashed_password):
            return None
        account.last_login = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(account)
        return account
