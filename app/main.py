"""STO Manager - FastAPI application."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import OperationalError

from app.config import get_settings
from app.database import Base, SessionLocal, engine
from app.errors import register_exception_handlers
# Import models so Base.metadata has all tables before create_all (schema source of truth)
from app.models import (  # noqa: F401
    Account, PendingAccount, OneTimeCode, AuditLog, SOHRecord, UploadLog, FormProgress,
)
from app.routers import auth, users, upload, notifications

log = logging.getLogger("uvicorn.error")

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(upload.router)
app.include_router(notifications.router)


def _log_mail_config() -> None:
    if settings.mailgun_api_key and settings.mailgun_domain:
        from_addr = settings.mailgun_from_email or ""
        from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
        send_domain = settings.mailgun_domain.lower()
        if from_domain and from_domain != send_domain:
            log.warning("[Mailgun] from=%s does not match domain=%s. Emails may not be delivered!", from_addr, settings.mailgun_domain)
            log.warning("[Mailgun] Fix: in .env set MAILGUN_FROM_EMAIL=noreply@%s then restart", settings.mailgun_domain)
        else:
            log.info("[Mailgun] App using domain=%s from=%s", settings.mailgun_domain, from_addr or "(none)")
    elif settings.sendgrid_api_key:
        log.info("[SendGrid] App using from=%s", settings.sendgrid_from_email)
    else:
        log.warning("[Mailgun] Not configured - verification emails will not be delivered; set MAILGUN_API_KEY and MAILGUN_DOMAIN in .env and restart")


@app.on_event("startup")
def startup():
    _log_mail_config()
    try:
        Base.metadata.create_all(bind=engine)
        from app.seed import seed_default_admin
        db = SessionLocal()
        try:
            seed_default_admin(db)
        finally:
            db.close()
    except OperationalError as e:
        log.warning("Database startup failed (tables/seed skipped). Check DATABASE_URL and network. Error: %s", e.orig)

    if settings.cleanup_enabled:
        from apscheduler.schedulers.background import BackgroundScheduler
        from app.services.cleanup import run_cleanup_job
        scheduler = BackgroundScheduler()
        scheduler.add_job(run_cleanup_job, "interval", minutes=settings.cleanup_interval_minutes)
        scheduler.start()
        app.state.scheduler = scheduler
        log.info("[Cleanup] Scheduled every %d minute(s)", settings.cleanup_interval_minutes)


@app.on_event("shutdown")
def shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
