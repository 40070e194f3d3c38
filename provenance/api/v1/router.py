"""API v1 router module."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from provenance.api.v1.verification_jobs import router as verification_jobs_router
from provenance.api.v1.verify import router as verify_router

router = APIRouter(default_response_class=JSONResponse)

router.include_router(verification_jobs_router)
router.include_router(verify_router)
