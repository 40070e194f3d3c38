"""Verification job endpoints."""

import os
import shutil
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from starlette.status import HTTP_200_OK, HTTP_202_ACCEPTED

from provenance.api.v1.dependencies import get_pipeline
from provenance.core.config import settings
from provenance.core.errors import NotFoundError, ValidationError
from provenance.queue.job import SyncResult
from provenance.queue.pipeline import VerificationPipeline
from provenance.queue.types import JobStatus
from provenance.verification.models import VerificationRequest, VerificationType
from provenance.verification.service import discard_upload

router = APIRouter(prefix="/verification-jobs", tags=["verification"])


def _save_upload(upload: UploadFile) -> str:
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    path = os.path.join(settings.UPLOAD_DIR, uuid4().hex)
    with open(path, "wb") as out:
        shutil.copyfileobj(upload.file, out)
    return path


def _submit(
    pipeline: VerificationPipeline,
    job_type: VerificationType,
    file: UploadFile | None,
    content_hash: str | None,
    manifest_uri: str,
    registry_address: str | None,
    rpc_url: str | None,
) -> JSONResponse:
    if file is None and not content_hash:
        raise ValidationError("Provide a file or content_hash")

    target: dict[str, Any] = {"kind": "cross"}
    if registry_address:
        target = {"kind": "single", "registry_address": registry_address, "rpc_url": rpc_url}

    path = None
    if file is not None:
        path = _save_upload(file)
        source: dict[str, Any] = {
            "kind": "file",
            "path": path,
            "filename": file.filename,
            "delete_after": True,
        }
    else:
        source = {"kind": "hash", "content_hash": content_hash}

    try:
        request = VerificationRequest.build(
            type=job_type, source=source, manifest_uri=manifest_uri, target=target
        )
    except ValidationError:
        if path is not None:
            os.remove(path)
        raise

    try:
        outcome = pipeline.submit(request)
    except Exception:
        discard_upload(request)
        raise

    if isinstance(outcome, SyncResult):
        discard_upload(request)
        return JSONResponse(outcome.to_wire(), status_code=HTTP_200_OK)
    return JSONResponse(outcome.to_wire(), status_code=HTTP_202_ACCEPTED)


@router.post("/verify")
def submit_verify(
    file: UploadFile | None = File(None),
    content_hash: str | None = Form(None),
    manifest_uri: str = Form(...),
    registry_address: str | None = Form(None),
    rpc_url: str | None = Form(None),
    pipeline: VerificationPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Verify a file (or precomputed hash) against its manifest and the registry."""
    return _submit(
        pipeline,
        VerificationType.VERIFY,
        file,
        content_hash,
        manifest_uri,
        registry_address,
        rpc_url,
    )


@router.post("/proof")
def submit_proof(
    file: UploadFile | None = File(None),
    content_hash: str | None = Form(None),
    manifest_uri: str = Form(...),
    registry_address: str | None = Form(None),
    rpc_url: str | None = Form(None),
    pipeline: VerificationPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Generate an archivable proof document."""
    return _submit(
        pipeline,
        VerificationType.PROOF,
        file,
        content_hash,
        manifest_uri,
        registry_address,
        rpc_url,
    )


@router.get("")
def list_jobs(
    status: JobStatus | None = Query(None, description="Filter by job status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    pipeline: VerificationPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    jobs = pipeline.list_jobs(status.value if status else None, limit, offset)
    return {"jobs": [job.to_wire() for job in jobs], "count": len(jobs)}


@router.get("/stats")
def job_stats(pipeline: VerificationPipeline = Depends(get_pipeline)) -> dict[str, Any]:
    return pipeline.stats()


@router.get("/{job_id}")
def get_job(
    job_id: str, pipeline: VerificationPipeline = Depends(get_pipeline)
) -> dict[str, Any]:
    """Poll a verification job; ``result`` is set once it has completed."""
    job = pipeline.get_job(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job.to_wire()
