from app.schemas.auth import (
    AccountResponse,
    CreateAccountRequest,
    LoginRequest,
    PendingAccountResponse,
    SignupRequest,
    Token,
    VerifyOtpRequest,
)
from app.schemas.common import success, success_response
from app.schemas.upload import UploadProgress, UploadResult
