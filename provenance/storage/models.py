"""SQLAlchemy models for verification records and jobs."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Integer, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationRecordModel(Base):
    """Latest verdict per content hash, kept for audit and history views."""

    __tablename__ = "verification"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()), nullable=False)
    content_hash = Column(Text, nullable=False, unique=True)
    manifest_uri = Column(Text, nullable=False)
    recovered_address = Column(Text, nullable=False)
    creator_onchain = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    verification_count = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )


class VerificationJobModel(Base):
    """Durable record of a queued verification job."""

    __tablename__ = "verification_job"

    id = Column(Text, primary_key=True, default=lambda: str(uuid4()), nullable=False)
    job_id = Column(Text, nullable=False, unique=True)
    type = Column(Text, nullable=False)
    content_hash = Column(Text, nullable=True)
    manifest_uri = Column(Text, nullable=False)
    registry_address = Column(Text, nullable=True)
    rpc_url = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="queued")
    progress = Column(Integer, nullable=False, default=0)
    result = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_verification_job_status_created", "status", "created_at"),
    )
