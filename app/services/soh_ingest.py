"""Stock-on-hand (SOH) file ingestion: CSV / Excel parsing, header normalisation, row validation."""
from __future__ import annotations

import csv
import io
import logging
import math
import secrets
import string
import time
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import PurePath
from typing import Any

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session

from app.errors import ApiError, ValidationFailed
from app.models.soh import FormProgress, FormStatus, SOHRecord, UploadLog, UploadStatus
from app.services.audit_log import create_log, CATEGORY_DATA_UPLOAD

log = logging.getLogger("uvicorn.error")

REQUIRED_COLUMNS = [
    "FormNo",
    "Storerkey",
    "SKU",
    "Loc",
    "Lot",
    "ID",
    "Qty_OnHand",
    "Qty_Allocated",
    "Qty_Available",
]

# Lower-cased header as it appears in files -> canonical column name
COLUMN_SYNONYMS = {
    "formno": "FormNo",
    "form_no": "FormNo",
    "form no": "FormNo",
    "storerkey": "Storerkey",
    "storer_key": "Storerkey",
    "sku": "SKU",
    "loc": "Loc",
    "location": "Loc",
    "lot": "Lot",
    "id": "ID",
    "item_id": "ID",
    "itemid": "ID",
    "qty_onhand": "Qty_OnHand",
    "qtyonhand": "Qty_OnHand",
    "qty onhand": "Qty_OnHand",
    "qty_allocated": "Qty_Allocated",
    "qtyallocated": "Qty_Allocated",
    "qty allocated": "Qty_Allocated",
    "qty_available": "Qty_Available",
    "qtyavailable": "Qty_Available",
    "qty available": "Qty_Available",
    "lottable01": "Lottable01",
    "lottable_01": "Lottable01",
    "project_scope": "Project_Scope",
    "projectscope": "Project_Scope",
    "lottable10": "Lottable10",
    "lottable_10": "Lottable10",
    "project_id": "Project_ID",
    "projectid": "Project_ID",
    "wbs_element": "WBS_Element",
    "wbselement": "WBS_Element",
    "sku_description": "SKU_Description",
    "skudescription": "SKU_Description",
    "skugrp": "SKUGRP",
    "sku_grp": "SKUGRP",
    "received_date": "Received_Date",
    "receiveddate": "Received_Date",
    "huid": "HUID",
    "owner_id": "Owner_Id",
    "ownerid": "Owner_Id",
    "stdcube": "stdcube",
}

REQUIRED_TEXT_FIELDS = ["FormNo", "Storerkey", "SKU", "Loc", "Lot", "ID"]
NUMERIC_FIELDS = ["Qty_OnHand", "Qty_Allocated", "Qty_Available", "stdcube"]
DATE_FIELD = "Received_Date"
DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d-%b-%Y")

# Canonical column -> (model attribute, max length)
TEXT_COLUMNS = {
    "FormNo": ("form_no", 100),
    "Storerkey": ("storerkey", 100),
    "SKU": ("sku", 100),
    "Loc": ("loc", 100),
    "Lot": ("lot", 100),
    "ID": ("item_id", 100),
    "Lottable01": ("lottable01", 100),
    "Project_Scope": ("project_scope", 100),
    "Lottable10": ("lottable10", 100),
    "Project_ID": ("project_id", 100),
    "WBS_Element": ("wbs_element", 100),
    "SKU_Description": ("sku_description", 500),
    "SKUGRP": ("skugrp", 100),
    "HUID": ("huid", 100),
    "Owner_Id": ("owner_id", 100),
}

CSV_CONTENT_TYPES = {"text/csv", "application/csv", "text/plain"}
EXCEL_CONTENT_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel.sheet.macroenabled.12",
}
# Browsers on Windows send this for .csv as well as legacy .xls
AMBIGUOUS_EXCEL_TYPE = "application/vnd.ms-excel"

SAMPLE_CSV = """FormNo,Storerkey,SKU,Loc,Lot,ID,Qty_OnHand,Qty_Allocated,Qty_Available,Lottable01,Project_Scope,Lottable10,Project_ID,WBS_Element,SKU_Description,SKUGRP,Received_Date,HUID,Owner_Id,stdcube
STO-2024-001,STORE01,SKU001,A01-01-01,LOT001,ITEM001,100,20,80,BATCH001,PROJECT_A,TAG001,PROJ001,WBS001,Sample Product 1,GRP001,2024-01-15,HUID001,OWNER001,1.5
STO-2024-001,STORE01,SKU002,A01-01-02,LOT002,ITEM002,50,10,40,BATCH002,PROJECT_A,TAG002,PROJ001,WBS001,Sample Product 2,GRP001,2024-01-16,HUID002,OWNER001,2.0
STO-2024-002,STORE02,SKU003,B01-01-01,LOT003,ITEM003,75,15,60,BATCH003,PROJECT_B,TAG003,PROJ002,WBS002,Sample Product 3,GRP002,2024-01-17,HUID003,OWNER002,1.8
STO-2024-002,STORE02,SKU004,B01-01-02,LOT004,ITEM004,120,25,95,BATCH004,PROJECT_B,TAG004,PROJ002,WBS002,Sample Product 4,GRP002,2024-01-18,HUID004,OWNER002,2.2
STO-2024-003,STORE03,SKU005,C01-01-01,LOT005,ITEM005,200,40,160,BATCH005,PROJECT_C,TAG005,PROJ003,WBS003,Sample Product 5,GRP003,2024-01-19,HUID005,OWNER003,1.2
"""


@dataclass
class ParsedRow:
    row_number: int  # physical line/row in the source file (header is row 1)
    values: dict[str, Any]
    # Set when the row cannot be mapped onto the header at all
    problem: str | None = None


@dataclass
class IngestResult:
    upload: UploadLog
    errors: list[str] = field(default_factory=list)


def normalize_column_name(name: Any) -> str:
    raw = str(name if name is not None else "").strip()
    return COLUMN_SYNONYMS.get(raw.lower(), raw)


def missing_columns(headers: list[str]) -> list[str]:
    present = {h.lower() for h in headers}
    return [col for col in REQUIRED_COLUMNS if col.lower() not in present]


def _check_headers(raw_headers: list[Any]) -> list[str]:
    headers = [normalize_column_name(h) for h in raw_headers]
    missing = missing_columns(headers)
    if missing:
        raise ValidationFailed(
            f"Missing required columns: {', '.join(missing)}",
            code="MISSING_COLUMNS",
            details={"missing": missing},
        )
    return headers


def parse_csv(content: bytes) -> list[ParsedRow]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationFailed("File must be UTF-8 encoded.", code="PARSE_ERROR")
    reader = csv.reader(io.StringIO(text))
    # line_num is the physical line the row ends on, blank lines included
    rows = [(reader.line_num, r) for r in reader if any(cell.strip() for cell in r)]
    if len(rows) < 2:
        raise ValidationFailed("CSV file must contain at least a header and one data row", code="PARSE_ERROR")
    headers = _check_headers(rows[0][1])
    parsed = []
    for line, values in rows[1:]:
        if len(values) != len(headers):
            parsed.append(
                ParsedRow(line, {}, problem=f"Row {line}: expected {len(headers)} fields, found {len(values)}")
            )
            continue
        parsed.append(ParsedRow(line, {h: v.strip() for h, v in zip(headers, values)}))
    return parsed


def parse_excel(content: bytes) -> list[ParsedRow]:
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise ValidationFailed(f"Could not read Excel file: {e}", code="PARSE_ERROR")
    try:
        if not workbook.sheetnames:
            raise ValidationFailed("Excel file contains no sheets", code="PARSE_ERROR")
        sheet = workbook[workbook.sheetnames[0]]
        rows = list(sheet.iter_rows(values_only=True))
    finally:
        workbook.close()
    if len(rows) < 2:
        raise ValidationFailed("Excel file must contain at least a header and one data row", code="PARSE_ERROR")
    headers = _check_headers(list(rows[0]))
    parsed = []
    for index, row in enumerate(rows[1:], start=2):
        if not row or all(cell is None or str(cell).strip() == "" for cell in row):
            continue
        values = {h: (row[i] if i < len(row) and row[i] is not None else "") for i, h in enumerate(headers)}
        parsed.append(ParsedRow(index, values))
    return parsed


def detect_format(filename: str | None, content_type: str | None) -> str:
    """Return "csv" or "excel"; raises INVALID_FILE_TYPE otherwise."""
    suffix = PurePath(filename or "").suffix.lower()
    ctype = (content_type or "").split(";")[0].strip().lower()
    if suffix == ".xls":
        raise ValidationFailed(
            "Legacy .xls workbooks are not supported. Save the file as .xlsx or CSV.",
            code="INVALID_FILE_TYPE",
        )
    if suffix == ".csv" or (not suffix and ctype in CSV_CONTENT_TYPES):
        return "csv"
    if suffix in (".xlsx", ".xlsm") or (not suffix and ctype in EXCEL_CONTENT_TYPES):
        return "excel"
    if ctype == AMBIGUOUS_EXCEL_TYPE and suffix in ("", ".csv"):
        return "csv"
    raise ValidationFailed("Invalid file type. Only CSV and Excel files are allowed", code="INVALID_FILE_TYPE")


def parse_file(filename: str | None, content_type: str | None, content: bytes) -> list[ParsedRow]:
    kind = detect_format(filename, content_type)
    return parse_csv(content) if kind == "csv" else parse_excel(content)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        # Excel hands back 1001.0 for a cell typed 1001
        return str(int(value))
    return str(value).strip()


def parse_number(value: Any) -> float | None:
    """None for blank; raises ValueError for non-numeric input."""
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        raw = _text(value)
        if not raw:
            return None
        number = float(raw)
    if not math.isfinite(number):
        raise ValueError("not a finite number")
    return number


def parse_date(value: Any) -> date | None:
    """None for blank; raises ValueError for unparseable input."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = _text(value)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        pass
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognised date {raw!r}")


def validate_record(values: dict[str, Any], row_number: int) -> list[str]:
    errors = []
    for name in REQUIRED_TEXT_FIELDS:
        if not _text(values.get(name)):
            errors.append(f"Row {row_number}: {name} is required")
    for name, (_, max_len) in TEXT_COLUMNS.items():
        if len(_text(values.get(name))) > max_len:
            errors.append(f"Row {row_number}: {name} exceeds {max_len} characters")
    for name in NUMERIC_FIELDS:
        try:
            parse_number(values.get(name))
        except ValueError:
            errors.append(f"Row {row_number}: {name} must be a valid number")
    try:
        parse_date(values.get(DATE_FIELD))
    except ValueError:
        errors.append(f"Row {row_number}: {DATE_FIELD} must be a valid date")
    return errors


def build_record(values: dict[str, Any], *, upload_id: str, uploaded_by: str) -> SOHRecord:
    """Map a validated row onto an SOHRecord. Blank quantities are stored as 0."""
    kwargs: dict[str, Any] = {}
    for name, (attr, _) in TEXT_COLUMNS.items():
        kwargs[attr] = _text(values.get(name)) or None
    return SOHRecord(
        **kwargs,
        qty_on_hand=parse_number(values.get("Qty_OnHand")) or 0,
        qty_allocated=parse_number(values.get("Qty_Allocated")) or 0,
        qty_available=parse_number(values.get("Qty_Available")) or 0,
        stdcube=parse_number(values.get("stdcube")),
        received_date=parse_date(values.get(DATE_FIELD)),
        upload_id=upload_id,
        uploaded_by=uploaded_by,
    )


def new_upload_id() -> str:
    suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(9))
    return f"upload_{int(time.time() * 1000)}_{suffix}"


def ingest_upload(
    db: Session,
    *,
    filename: str,
    content_type: str | None,
    content: bytes,
    uploaded_by: str,
    actor_email: str | None = None,
    context: dict | None = None,
) -> IngestResult:
    """Parse, validate and store an SOH file. Invalid rows are skipped and reported, not fatal."""
    rows = parse_file(filename, content_type, content)
    if not rows:
        raise ValidationFailed("No valid records found in file", code="NO_RECORDS")

    upload = UploadLog(
        id=new_upload_id(),
        file_name=filename,
        file_size=len(content),
        total_records=len(rows),
        status=UploadStatus.processing,
        uploaded_by=uploaded_by,
    )
    db.add(upload)
    db.commit()
    upload_id = upload.id
    log.info("[Upload] %s started: file=%s rows=%d by=%s", upload_id, filename, len(rows), uploaded_by)

    errors: list[str] = []
    records: list[SOHRecord] = []
    for row in rows:
        if row.problem:
            errors.append(row.problem)
            continue
        row_errors = validate_record(row.values, row.row_number)
        if row_errors:
            errors.extend(row_errors)
            continue
        records.append(build_record(row.values, upload_id=upload_id, uploaded_by=uploaded_by))

    try:
        db.add_all(records)
        form_nos = sorted({r.form_no for r in records})
        if form_nos:
            existing = {
                f for (f,) in db.query(FormProgress.form_no).filter(FormProgress.form_no.in_(form_nos)).all()
            }
            for form_no in form_nos:
                if form_no not in existing:
                    db.add(FormProgress(form_no=form_no, status=FormStatus.printed, updated_by=uploaded_by))
        db.flush()
    except (IntegrityError, DataError) as e:
        db.rollback()
        log.error("[Upload] %s insert failed: %s", upload_id, e.orig)
        upload = db.query(UploadLog).filter(UploadLog.id == upload_id).one()
        upload.status = UploadStatus.failed
        upload.failed_records = upload.total_records
        upload.completed_at = datetime.now(timezone.utc)
        db.commit()
        raise ApiError("Database insertion failed", code="INSERT_FAILED", details={"upload_id": upload_id})

    upload.successful_records = len(records)
    upload.failed_records = len(rows) - len(records)
    upload.status = UploadStatus.completed if upload.failed_records == 0 else UploadStatus.completed_with_errors
    upload.completed_at = datetime.now(timezone.utc)
    create_log(
        db,
        CATEGORY_DATA_UPLOAD,
        "SOH file uploaded",
        f"{filename}: {upload.successful_records} of {upload.total_records} rows stored.",
        actor_account_id=uploaded_by,
        actor_email=actor_email,
        meta={"upload_id": upload_id, "failed_records": upload.failed_records},
        **(context or {}),
    )
    db.commit()
    db.refresh(upload)
    log.info(
        "[Upload] %s finished: ok=%d failed=%d",
        upload_id,
        upload.successful_records,
        upload.failed_records,
    )
    return IngestResult(upload=upload, errors=errors)


def get_upload_progress(db: Session, upload_id: str, account_id: str) -> UploadLog | None:
    """Upload log visible to the account that uploaded it."""
    return (
        db.query(UploadLog)
        .filter(UploadLog.id == upload_id, UploadLog.uploaded_by == account_id)
        .first()
    )


def progress_percentage(upload: UploadLog) -> int:
    total = upload.total_records or 0
    if total <= 0:
        return 0
    done = (upload.successful_records or 0) + (upload.failed_records or 0)
    return round(done / total * 100)
