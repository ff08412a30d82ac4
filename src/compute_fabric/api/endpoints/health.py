from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response

from compute_fabric.api.dependencies import Services, get_services
from compute_fabric.api.models import JobStatus
from compute_fabric.core.time import utc_timestamp
from compute_fabric.utils.metrics import render_latest

router = APIRouter()


@router.get("/health")
def liveness() -> dict[str, str]:
    """Basic liveness probe."""
    return {"status": "ok"}


@router.get("/health/ready")
def readiness(services: Annotated[Services, Depends(get_services)]) -> dict[str, object]:
    """Readiness probe verifying the database and reporting scheduler state."""
    status: dict[str, object] = {"database": False, "scheduler": services.runner.is_running}
    try:
        services.database.ping()
        status["database"] = True
    except Exception as exc:  # pragma: no cover - depends on the database being down
        status["database_error"] = repr(exc)
        raise HTTPException(status_code=503, detail=status) from exc

    status["queued_jobs"] = services.store.count_jobs(JobStatus.QUEUED)
    return {
        "status": "ready",
        "timestamp": utc_timestamp(),
        **status,
    }


@router.get("/metrics")
def metrics() -> Response:
    payload, content_type = render_latest()
    return Response(content=payload, media_type=content_type)
