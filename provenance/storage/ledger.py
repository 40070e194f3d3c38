"""Verification ledger and job record repository."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from provenance.storage.database import session_scope
from provenance.storage.models import VerificationJobModel, VerificationRecordModel

logger = logging.getLogger(__name__)

# Attempts for create-or-update when a concurrent writer wins the insert
_UPSERT_ATTEMPTS = 2


@dataclass(frozen=True)
class VerificationRecord:
    """A verdict to append to the ledger."""

    content_hash: str
    manifest_uri: str
    recovered_address: str
    creator_onchain: str
    status: str


def _columns(model: Any) -> dict[str, Any]:
    return {c.name: getattr(model, c.name) for c in model.__table__.columns}


class VerificationLedger:
    """Audit history of verdicts, one row per content hash.

    Repeated verification of the same content updates the row in place
    (last write wins) instead of inserting duplicates, so retried jobs do not
    double-count.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._factory = session_factory

    def upsert(self, record: VerificationRecord) -> None:
        """Insert or update the record for ``record.content_hash``."""
        for attempt in range(_UPSERT_ATTEMPTS):
            try:
                with session_scope(self._factory) as session:
                    existing = session.execute(
                        select(VerificationRecordModel).where(
                            VerificationRecordModel.content_hash == record.content_hash
                        )
                    ).scalar_one_or_none()
                    if existing is None:
                        session.add(
                            VerificationRecordModel(
                                content_hash=record.content_hash,
                                manifest_uri=record.manifest_uri,
                                recovered_address=record.recovered_address,
                                creator_onchain=record.creator_onchain,
                                status=record.status,
                                verification_count=1,
                            )
                        )
                    else:
                        existing.manifest_uri = record.manifest_uri
                        existing.recovered_address = record.recovered_address
                        existing.creator_onchain = record.creator_onchain
                        existing.status = record.status
                        existing.verification_count = existing.verification_count + 1
                        existing.updated_at = datetime.now(timezone.utc)
                return
            except IntegrityError:
                # Another writer inserted the same hash first; update instead
                if attempt == _UPSERT_ATTEMPTS - 1:
                    raise
                logger.debug(
                    "Concurrent insert for %s, retrying as update", record.content_hash
                )

    def find_entry(self, content_hash: str) -> dict[str, Any] | None:
        """Get the latest recorded verdict for a content hash."""
        with session_scope(self._factory) as session:
            row = session.execute(
                select(VerificationRecordModel).where(
                    VerificationRecordModel.content_hash == content_hash
                )
            ).scalar_one_or_none()
            return _columns(row) if row is not None else None

    def history(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recently updated verdicts first."""
        with session_scope(self._factory) as session:
            rows = session.execute(
                select(VerificationRecordModel)
                .order_by(VerificationRecordModel.updated_at.desc())
                .limit(limit)
            ).scalars()
            return [_columns(row) for row in rows]


class JobRepository:
    """Create, update and query verification job records."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._factory = session_factory

    def create_or_update(self, job_id: str, **fields: Any) -> None:
        """Update the job record, creating it first if it does not exist.

        Safe to call on every processing attempt, including retries.
        """
        fields = _encode(fields)
        for attempt in range(_UPSERT_ATTEMPTS):
            try:
                with session_scope(self._factory) as session:
                    existing = session.execute(
                        select(VerificationJobModel).where(
                            VerificationJobModel.job_id == job_id
                        )
                    ).scalar_one_or_none()
                    if existing is None:
                        session.add(VerificationJobModel(job_id=job_id, **fields))
                    else:
                        for name, value in fields.items():
                            setattr(existing, name, value)
                return
            except IntegrityError:
                if attempt == _UPSERT_ATTEMPTS - 1:
                    raise
                logger.debug("Job %s created concurrently, retrying as update", job_id)

    def update(self, job_id: str, **fields: Any) -> bool:
        """Update an existing job record; returns False if it does not exist."""
        with session_scope(self._factory) as session:
            result = session.execute(
                update(VerificationJobModel)
                .where(VerificationJobModel.job_id == job_id)
                .values(**_encode(fields))
            )
            return bool(result.rowcount)

    def get(self, job_id: str) -> dict[str, Any] | None:
        with session_scope(self._factory) as session:
            row = session.execute(
                select(VerificationJobModel).where(VerificationJobModel.job_id == job_id)
            ).scalar_one_or_none()
            return _decode(_columns(row)) if row is not None else None

    def list_jobs(
        self, status: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[dict[str, Any]]:
        """List job records newest first."""
        query = select(VerificationJobModel)
        if status:
            query = query.where(VerificationJobModel.status == status)
        query = (
            query.order_by(VerificationJobModel.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        with session_scope(self._factory) as session:
            return [_decode(_columns(row)) for row in session.execute(query).scalars()]

    def count_by_status(self) -> dict[str, int]:
        with session_scope(self._factory) as session:
            rows = session.execute(
                select(VerificationJobModel.status, func.count()).group_by(
                    VerificationJobModel.status
                )
            ).all()
            return {status: count for status, count in rows}

    def prune(self, completed_before: datetime, failed_before: datetime) -> int:
        """Delete finished job records older than their retention windows.

        Returns:
            Number of deleted records
        """
        with session_scope(self._factory) as session:
            deleted = 0
            for status, cutoff in (
                ("completed", completed_before),
                ("failed", failed_before),
            ):
                result = session.execute(
                    delete(VerificationJobModel).where(
                        VerificationJobModel.status == status,
                        VerificationJobModel.completed_at < cutoff,
                    )
                )
                deleted += result.rowcount or 0
            return deleted


def _encode(fields: dict[str, Any]) -> dict[str, Any]:
    # Results are stored as JSON text
    if "result" in fields and fields["result"] is not None:
        fields = {**fields, "result": json.dumps(fields["result"])}
    return fields


def _decode(row: dict[str, Any]) -> dict[str, Any]:
    if row.get("result"):
        row["result"] = json.loads(row["result"])
    return row
