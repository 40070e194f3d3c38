"""Application startup and shutdown events."""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from provenance.core.config import Settings
from provenance.queue.pipeline import VerificationPipeline

logger: logging.Logger = logging.getLogger("provenance.core.events")


async def start_app(app: FastAPI, settings: Settings) -> None:
    """Build the verification pipeline once and store it on ``app.state``.

    Tests may pre-populate ``app.state.pipeline``.
    """
    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = await run_in_threadpool(
            VerificationPipeline.from_settings, settings
        )
    pipeline: VerificationPipeline = app.state.pipeline
    logger.info(
        "Application startup complete - "
        f"mode: {'async' if pipeline.is_available else 'sync'}"
    )


async def stop_app(app: FastAPI) -> None:
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is None:
        return
    try:
        await run_in_threadpool(pipeline.close)
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")
        raise
    finally:
        app.state.pipeline = None


def create_lifespan(
    settings: Settings,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Create the app lifespan bound to ``settings``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await start_app(app, settings)
        try:
            yield
        finally:
            await stop_app(app)

    return lifespan
