"""SOH file upload, upload progress and the sample CSV template."""
from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.config import get_settings
from app.database import get_db
from app.dependencies import Principal, get_current_principal, require_elevated
from app.errors import NotFoundError, ValidationFailed
from app.schemas.common import success
from app.schemas.upload import UploadProgress, UploadResult
from app.services.audit_log import request_context
from app.services.soh_ingest import SAMPLE_CSV, get_upload_progress, ingest_upload, progress_percentage

router = APIRouter(tags=["upload"])


@router.post("/upload")
def upload_soh_file(
    request: Request,
    file: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_elevated),
):
    """Upload an SOH file (CSV or .xlsx). Required columns: FormNo, Storerkey, SKU, Loc, Lot, ID, Qty_OnHand, Qty_Allocated, Qty_Available."""
    if file is None or not file.filename:
        raise ValidationFailed("No file uploaded", code="NO_FILE")
    max_bytes = get_settings().upload_max_bytes
    content = file.file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise ValidationFailed(
            f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
            code="FILE_TOO_LARGE",
        )
    if not content:
        raise ValidationFailed("File is empty.", code="NO_RECORDS")

    result = ingest_upload(
        db,
        filename=file.filename,
        content_type=file.content_type,
        content=content,
        uploaded_by=principal.id,
        actor_email=principal.email,
        context=request_context(request),
    )
    upload = result.upload
    return success(
        UploadResult(
            upload_id=upload.id,
            file_name=upload.file_name,
            total_records=upload.total_records,
            successful_records=upload.successful_records,
            failed_records=upload.failed_records,
            status=upload.status,
            errors=result.errors,
        ),
        "File uploaded and processed successfully",
    )


@router.get("/upload/progress/{upload_id}")
def upload_progress(
    upload_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    upload = get_upload_progress(db, upload_id, principal.id)
    if upload is None:
        raise NotFoundError("Upload not found", code="UPLOAD_NOT_FOUND")
    return success(
        UploadProgress(
            upload_id=upload.id,
            file_name=upload.file_name,
            file_size=upload.file_size,
            total_records=upload.total_records,
            successful_records=upload.successful_records,
            failed_records=upload.failed_records,
            status=upload.status,
            created_at=upload.created_at,
            completed_at=upload.completed_at,
            progress_percentage=progress_percentage(upload),
        )
    )


@router.get("/sample-csv")
def sample_csv(principal: Principal = Depends(require_elevated)):
    return Response(
        content=SAMPLE_CSV,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="sample_soh_data.csv"'},
    )
