"""Periodic housekeeping: drop expired signup requests and spent one-time codes."""
import logging

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.services.otp import OtpService
from app.services.pending_accounts import PendingAccountStore

log = logging.getLogger("uvicorn.error")


def run_cleanup(db: Session) -> tuple[int, int]:
    """Returns (pending accounts deleted, codes deleted)."""
    pending = PendingAccountStore(db).purge_expired()
    try:
        codes = OtpService(db).purge_expired_or_used()
    except OperationalError as e:
        db.rollback()
        log.warning("[Cleanup] OTP purge skipped, datastore unavailable: %s", e.orig)
        codes = 0
    return pending, codes


def run_cleanup_job() -> None:
    """Scheduler entry point; uses its own session."""
    db: Session = SessionLocal()
    try:
        pending, codes = run_cleanup(db)
        if pending or codes:
            log.info("[Cleanup] Deleted %d expired signup request(s) and %d spent code(s).", pending, codes)
    finally:
        db.close()
