"""Verification job models."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from provenance.queue.types import JobStatus, JobType
from provenance.verification.models import ProofDocument, Verdict


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class VerificationJob(_Wire):
    """A verification job as seen by pollers."""

    job_id: str = Field(alias="jobId")
    type: JobType
    content_hash: str | None = Field(default=None, alias="contentHash")
    manifest_uri: str = Field(alias="manifestUri")
    registry_address: str | None = Field(default=None, alias="registryAddress")
    rpc_url: str | None = Field(default=None, alias="rpcUrl")
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    result: dict[str, Any] | None = None
    error: str | None = None
    retry_count: int = Field(default=0, alias="retryCount")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    started_at: datetime | None = Field(default=None, alias="startedAt")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    # Live RQ status, when the queue still knows the job
    state: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any], state: str | None = None) -> "VerificationJob":
        """Build from a job repository record.

        The result is only exposed once the job has completed.
        """
        data = {name: record.get(name) for name in cls.model_fields if name in record}
        if data.get("status") != JobStatus.COMPLETED.value:
            data["result"] = None
        if data.get("progress") is None:
            data["progress"] = 0
        data["state"] = state
        return cls.model_validate(data)


class SyncResult(_Wire):
    """A verification that ran inline because no queue is available."""

    mode: Literal["sync"] = "sync"
    result: Verdict | ProofDocument

    def to_wire(self) -> dict[str, Any]:
        return {"mode": self.mode, "result": self.result.to_wire()}


class JobHandle(_Wire):
    """Handle for a verification accepted onto the queue."""

    mode: Literal["async"] = "async"
    job_id: str = Field(alias="jobId")
    status: JobStatus = JobStatus.QUEUED
    message: str = "Verification job queued"
    poll_url: str = Field(alias="pollUrl")
