import random
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from compute_fabric import __version__
from compute_fabric.api.config import Settings, get_settings
from compute_fabric.api.dependencies import Services, build_services
from compute_fabric.api.endpoints import health, jobs, providers
from compute_fabric.api.services.settlement import ChargeBackend
from compute_fabric.core.exceptions import FabricError
from compute_fabric.core.logging import get_logger, set_correlation_id
from compute_fabric.core.time import Clock, utcnow
from compute_fabric.utils import metrics

LOGGER = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def create_app(
    settings: Optional[Settings] = None,
    *,
    clock: Clock = utcnow,
    charge_backend: Optional[ChargeBackend] = None,
    rng: Optional[random.Random] = None,
) -> FastAPI:
    """Build the orchestrator API with its own, explicitly wired services."""
    settings = settings or get_settings()
    services = build_services(settings, clock=clock, charge_backend=charge_backend, rng=rng)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.SCHEDULER_ENABLED:
            services.runner.start(settings.SCHEDULER_INTERVAL_SECONDS)
        yield
        services.shutdown()

    app = FastAPI(title=settings.PROJECT_NAME, version=__version__, lifespan=lifespan)
    app.state.services = services

    _install_middleware(app)
    _install_error_handlers(app)

    app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
    app.include_router(providers.router, prefix="/providers", tags=["providers"])
    app.include_router(health.router, tags=["health"])
    return app


def _install_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def correlation_and_metrics(request: Request, call_next):
        cid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        set_correlation_id(cid)
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = cid
            return response
        finally:
            metrics.API_REQUEST_LATENCY.labels(method=request.method, status_code=str(status_code)).observe(
                time.perf_counter() - start
            )


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(FabricError)
    async def fabric_error_handler(request: Request, exc: FabricError) -> JSONResponse:
        if exc.status_code >= 500:
            LOGGER.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            LOGGER.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": jsonable_encoder(exc.to_dict())})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = {
            "code": "invalid_input",
            "message": "Request validation failed",
            "metadata": {"errors": jsonable_encoder(exc.errors())},
        }
        return JSONResponse(status_code=400, content={"error": error})


__all__ = ["create_app", "Services"]
