"""
All SQLAlchemy models. Schema is the source of truth for new DBs.
Base.metadata.create_all() creates every table; no migration scripts needed for fresh installs.
"""
from app.models.account import Account, AccountRole
from app.models.pending_account import PendingAccount
from app.models.otp_code import OneTimeCode, OtpPurpose
from app.models.audit_log import AuditLog
from app.models.soh import SOHRecord, UploadLog, FormProgress, UploadStatus, FormStatus

__all__ = [
    "Account",
    "AccountRole",
    "PendingAccount",
    "OneTimeCode",
    "OtpPurpose",
    "AuditLog",
    "SOHRecord",
    "UploadLog",
    "FormProgress",
    "UploadStatus",
    "FormStatus",
]
