"""SOH upload schemas."""
from datetime import datetime

from pydantic import BaseModel

from app.models.soh import UploadStatus


class UploadResult(BaseModel):
    upload_id: str
    file_name: str
    total_records: int
    successful_records: int
    failed_records: int
    status: UploadStatus
    errors: list[str] = []


class UploadProgress(BaseModel):
    upload_id: str
    file_name: str
    file_size: int
    total_records: int
    successful_records: int
    failed_records: int
    status: UploadStatus
    created_at: datetime | None = None
    completed_at: datetime | None = None
    progress_percentage: int
