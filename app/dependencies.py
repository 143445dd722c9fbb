"""Shared dependencies: DB session, current principal, elevated-role guard."""
from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.database import get_db
from app.errors import Forbidden, Unauthorized
from app.models.account import Account, AccountRole, ELEVATED_ROLE
from app.services.auth import decode_token_with_error

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller. Role is read from the datastore, not trusted from the token."""
    id: str
    email: str
    role: AccountRole

    @property
    def is_elevated(self) -> bool:
        return self.role == ELEVATED_ROLE


def get_current_account(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Account:
    if not credentials:
        raise Unauthorized("Authentication required")
    payload, _ = decode_token_with_error((credentials.credentials or "").strip())
    if not payload or not payload.get("sub"):
        raise Unauthorized("Invalid or expired token")
    account = db.query(Account).filter(Account.id == str(payload["sub"])).first()
    if not account or not account.is_active:
        raise Unauthorized("Account not found or inactive")
    return account


def get_current_principal(account: Account = Depends(get_current_account)) -> Principal:
    return Principal(id=account.id, email=account.email, role=AccountRole(account.role))


def require_elevated(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_elevated:
        raise Forbidden("Insufficient permissions")
    return principal
