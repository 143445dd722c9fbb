"""Append-only audit trail for account lifecycle, failed attempts, user admin and uploads."""
from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

CATEGORY_ACCOUNT_LIFECYCLE = "account_lifecycle"
CATEGORY_FAILED_ATTEMPT = "failed_attempt"
CATEGORY_USER_ADMIN = "user_admin"
CATEGORY_DATA_UPLOAD = "data_upload"

# Column limits (match model)
_LIMITS = {
    "category": 32,
    "title": 255,
    "actor_email": 255,
    "ip_address": 64,
    "user_agent": 500,
    "message": 100_000,
}


def _clip(field: str, value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()[: _LIMITS[field]]
    return text or None


def request_context(request: Request | None) -> dict[str, str | None]:
    """ip_address / user_agent kwargs for create_log from an incoming request."""
    if request is None:
        return {"ip_address": None, "user_agent": None}
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": _clip("user_agent", request.headers.get("user-agent")),
    }


def create_log(
    db: Session,
    category: str,
    title: str,
    message: str,
    *,
    actor_account_id: str | None = None,
    actor_email: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    meta: dict[str, Any] | None = None,
) -> AuditLog:
    """Add one audit record and flush it. Committing is the caller's job, so the entry
    lands in the same transaction as the change it describes."""
    entry = AuditLog(
        category=_clip("category", category) or CATEGORY_ACCOUNT_LIFECYCLE,
        title=_clip("title", title) or "-",
        message=_clip("message", message) or "-",
        actor_account_id=actor_account_id,
        actor_email=_clip("actor_email", actor_email),
        ip_address=_clip("ip_address", ip_address),
        user_agent=_clip("user_agent", user_agent),
        # enums, datetimes and the like become plain JSON
        meta=jsonable_encoder(meta) if meta is not None else None,
    )
    db.add(entry)
    db.flush()
    return entry
