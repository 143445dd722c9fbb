"""Seed the default elevated account from settings (DEFAULT_ADMIN_EMAIL / DEFAULT_ADMIN_PASSWORD)."""
import logging

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.account import Account, ELEVATED_ROLE
from app.services.accounts import AccountStore

log = logging.getLogger("uvicorn.error")


def seed_default_admin(db: Session, settings: Settings | None = None) -> Account | None:
    settings = settings or get_settings()
    if not settings.default_admin_email or not settings.default_admin_password:
        return None
    store = AccountStore(db)
    existing = store.get_by_email(settings.default_admin_email)
    if existing:
        return existing
    account = store.create(
        settings.default_admin_email,
        settings.default_admin_name,
        settings.default_admin_password,
        ELEVATED_ROLE,
    )
    log.info("[Seed] Created default %s account %s", ELEVATED_ROLE.value, account.email)
    return account
