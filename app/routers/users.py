"""User administration (elevated role only)."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import Principal, require_elevated
from app.errors import NotFoundError
from app.schemas.auth import AccountResponse, CreateAccountRequest, PendingAccountResponse
from app.schemas.common import success, success_response
from app.services.accounts import AccountStore
from app.services.audit_log import create_log, request_context, CATEGORY_USER_ADMIN
from app.services.pending_accounts import PendingAccountStore

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
def list_users(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_elevated),
):
    users = [AccountResponse.model_validate(a) for a in AccountStore(db).list_active()]
    return success({"users": users})


@router.post("")
def create_user(
    request: Request,
    data: CreateAccountRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_elevated),
):
    account = AccountStore(db).create(
        data.email, data.name, data.password, data.role, created_by=principal.id, commit=False
    )
    create_log(
        db,
        CATEGORY_USER_ADMIN,
        "User created",
        f"{principal.email} created account {account.email} with role {data.role.value}.",
        actor_account_id=principal.id,
        actor_email=principal.email,
        meta={"account_id": account.id, "role": data.role},
        **request_context(request),
    )
    db.commit()
    db.refresh(account)
    return success_response(AccountResponse.model_validate(account), "User created successfully", status_code=201)


@router.get("/pending")
def list_pending_users(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_elevated),
):
    """Verified signup requests waiting for approval."""
    pending = [PendingAccountResponse.model_validate(p) for p in PendingAccountStore(db).list_awaiting_approval()]
    return success({"pending_users": pending})


@router.get("/{account_id}")
def get_user(
    account_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_elevated),
):
    account = AccountStore(db).get_active(account_id)
    if account is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return success(AccountResponse.model_validate(account))


@router.delete("/{account_id}")
def delete_user(
    request: Request,
    account_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_elevated),
):
    account = AccountStore(db).deactivate(account_id, actor_id=principal.id, commit=False)
    create_log(
        db,
        CATEGORY_USER_ADMIN,
        "User deactivated",
        f"{principal.email} deactivated account {account.email}.",
        actor_account_id=principal.id,
        actor_email=principal.email,
        meta={"account_id": account.id},
        **request_context(request),
    )
    db.commit()
    return success({"id": account.id, "is_active": False}, "User deleted successfully")
