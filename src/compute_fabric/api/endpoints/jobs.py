from typing import Annotated, List, Optional, Union

from fastapi import APIRouter, Depends, Query

from compute_fabric.api.config import Settings
from compute_fabric.api.dependencies import get_job_runner, get_job_store, get_settings_dep, get_settlement
from compute_fabric.api.models import (
    AssignJobRequest,
    AssignJobResponse,
    ContainerConfigResponse,
    CreateJobRequest,
    JobResponse,
    JobStatus,
    NoJobResponse,
    PaymentResponse,
    ReportStatusRequest,
    ReportStatusResponse,
    SettlementResponse,
)
from compute_fabric.api.services.job_runner import Assignment, JobRunner
from compute_fabric.api.services.job_store import JobStore
from compute_fabric.api.services.settlement import SettlementConnector
from compute_fabric.containers import render_run_command
from compute_fabric.core.exceptions import NotFound
from compute_fabric.utils import metrics

router = APIRouter()


def _assignment_response(assignment: Assignment) -> AssignJobResponse:
    config = assignment.container_config
    return AssignJobResponse(
        job=JobResponse.model_validate(assignment.job),
        container_config=ContainerConfigResponse(
            image=config.image,
            command=config.command,
            env=dict(config.env),
            volumes=dict(config.volumes),
            gpu=config.gpu,
            memory_limit=config.memory_limit,
            cpu_limit=config.cpu_limit,
            run_command=render_run_command(config),
        ),
    )


@router.post("", response_model=JobResponse, status_code=201)
def create_job(
    request: CreateJobRequest,
    store: Annotated[JobStore, Depends(get_job_store)],
):
    job = store.create_job(request.user_id, request.docker_image, request.command)
    metrics.JOBS_SUBMITTED_TOTAL.inc()
    return job


@router.get("", response_model=List[JobResponse])
def list_jobs(
    store: Annotated[JobStore, Depends(get_job_store)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    user_id: Annotated[Optional[str], Query(alias="userId")] = None,
    status: Optional[JobStatus] = None,
    limit: Annotated[Optional[int], Query(ge=1)] = None,
):
    limit = min(limit or settings.DEFAULT_JOB_LIST_LIMIT, settings.MAX_JOB_LIST_LIMIT)
    if user_id:
        return store.list_jobs_for_user(user_id, limit, status)
    return store.list_all_jobs(limit, status)


@router.post("/assign", response_model=Union[AssignJobResponse, NoJobResponse])
def assign_job(
    request: AssignJobRequest,
    runner: Annotated[JobRunner, Depends(get_job_runner)],
):
    """Provider pull: hand the caller the oldest queued job, if any."""
    assignment = runner.assign_next(request.provider_id)
    if assignment is None:
        return NoJobResponse()
    return _assignment_response(assignment)


@router.post("/report", response_model=ReportStatusResponse)
def report_status(
    request: ReportStatusRequest,
    runner: Annotated[JobRunner, Depends(get_job_runner)],
):
    runner.report_status(
        request.job_id,
        request.provider_id,
        request.status,
        measured_minutes=request.execution_time_minutes,
    )
    return ReportStatusResponse(success=True)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(
    job_id: str,
    store: Annotated[JobStore, Depends(get_job_store)],
):
    job = store.get_job(job_id)
    if not job:
        raise NotFound(f"Job {job_id} not found", metadata={"job_id": job_id})
    return job


@router.get("/{job_id}/settlement", response_model=SettlementResponse)
def get_job_settlement(
    job_id: str,
    store: Annotated[JobStore, Depends(get_job_store)],
    settlement: Annotated[SettlementConnector, Depends(get_settlement)],
):
    """Cost, provider share and payment attempts for one job."""
    job = store.get_job(job_id)
    if not job:
        raise NotFound(f"Job {job_id} not found", metadata={"job_id": job_id})
    payments = settlement.ledger.list_for_job(job_id)
    return SettlementResponse(
        job_id=job.job_id,
        status=job.status,
        cost=job.cost,
        provider_earnings=settlement.compute_provider_earnings(job.cost),
        payments=[PaymentResponse.model_validate(payment) for payment in payments],
    )
