"""Stock-on-hand snapshot rows, upload tracking and stock-take form progress."""
import enum

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Enum as SQLEnum
from sqlalchemy.sql import func

from app.database import Base


class UploadStatus(str, enum.Enum):
    processing = "processing"
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    failed = "failed"


class FormStatus(str, enum.Enum):
    printed = "PRINTED"
    distributed = "DISTRIBUTED"
    verified = "VERIFIED"
    input = "INPUT"
    completed = "COMPLETED"
    archived = "ARCHIVED"


class SOHRecord(Base):
    __tablename__ = "soh_records"

    id = Column(Integer, primary_key=True, index=True)
    form_no = Column(String(100), nullable=False, index=True)
    storerkey = Column(String(100), nullable=False)
    sku = Column(String(100), nullable=False, index=True)
    loc = Column(String(100), nullable=False)
    lot = Column(String(100), nullable=False)
    item_id = Column(String(100), nullable=False)
    qty_on_hand = Column(Float, nullable=False, default=0)
    qty_allocated = Column(Float, nullable=False, default=0)
    qty_available = Column(Float, nullable=False, default=0)

    lottable01 = Column(String(100), nullable=True)
    project_scope = Column(String(100), nullable=True)
    lottable10 = Column(String(100), nullable=True)
    project_id = Column(String(100), nullable=True)
    wbs_element = Column(String(100), nullable=True)
    sku_description = Column(String(500), nullable=True)
    skugrp = Column(String(100), nullable=True)
    received_date = Column(Date, nullable=True)
    huid = Column(String(100), nullable=True)
    owner_id = Column(String(100), nullable=True)
    stdcube = Column(Float, nullable=True)

    upload_id = Column(String(64), nullable=True, index=True)
    uploaded_by = Column(String(36), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class UploadLog(Base):
    __tablename__ = "upload_logs"

    id = Column(String(64), primary_key=True)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    total_records = Column(Integer, nullable=False, default=0)
    successful_records = Column(Integer, nullable=False, default=0)
    failed_records = Column(Integer, nullable=False, default=0)
    status = Column(SQLEnum(UploadStatus), nullable=False, default=UploadStatus.processing)
    uploaded_by = Column(String(36), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class FormProgress(Base):
    __tablename__ = "form_progress"

    id = Column(Integer, primary_key=True, index=True)
    form_no = Column(String(100), unique=True, nullable=False)
    status = Column(SQLEnum(FormStatus), nullable=False, default=FormStatus.printed)
    updated_by = Column(String(36), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
