from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response

from api.observability import (
    monotonic_ms,
    new_request_id,
    request_log_fields,
    reset_request_id,
    set_request_id,
)
from api.routes import router
from core.config import get_settings
from core.logging_config import setup_logging
from core.services.generator import WeekGenerator
from core.services.orchestrator import build_orchestrator
from core.services.repository import PlanRepository
from core.services.scheduler import build_scheduler

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SHUTDOWN_DRAIN_SECONDS = 30.0


def create_app(
    generator: Optional[WeekGenerator] = None,
    repository: Optional[PlanRepository] = None,
) -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        orchestrator = build_orchestrator(settings, generator=generator, repository=repository)
        app.state.orchestrator = orchestrator
        scheduler = None
        if settings.scheduler_enabled:
            scheduler = build_scheduler(orchestrator, settings)
            scheduler.start()
            logger.info("scheduler_started", extra={"ctx_jobs": [job.id for job in scheduler.get_jobs()]})
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            await orchestrator.drain(timeout=SHUTDOWN_DRAIN_SECONDS)

    app = FastAPI(title="Periodization Scheduler API", version="1.0.0", lifespan=lifespan)
    app.include_router(router)

    @app.middleware("http")
    async def request_context_and_logging(request: Request, call_next: Callable) -> Response:
        request_id = (request.headers.get(REQUEST_ID_HEADER) or "").strip() or new_request_id()
        token = set_request_id(request_id)
        started_ms = monotonic_ms()
        client_ip = getattr(request.client, "host", None)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "http_request_error",
                extra=request_log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=500,
                    duration_ms=monotonic_ms() - started_ms,
                    client_ip=client_ip,
                ),
            )
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.info(
                "http_request",
                extra=request_log_fields(
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=monotonic_ms() - started_ms,
                    client_ip=client_ip,
                ),
            )
            return response
        finally:
            reset_request_id(token)

    return app


app = create_app()
