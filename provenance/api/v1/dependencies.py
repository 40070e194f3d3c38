"""Request-scoped access to the process-wide pipeline."""

from fastapi import Request

from provenance.queue.pipeline import VerificationPipeline
from provenance.verification.service import VerificationService


def get_pipeline(request: Request) -> VerificationPipeline:
    return request.app.state.pipeline


def get_service(request: Request) -> VerificationService:
    return request.app.state.pipeline.service
