"""Job runner: matches queued jobs with available providers and settles results.

The runner holds no authoritative state. Every decision is arbitrated by the
:class:`JobStore` through conditional updates, so several runners (or a runner
and concurrent provider pull requests) can share one database.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, List, Optional, Tuple

from compute_fabric.api.database import JobDB
from compute_fabric.api.models import JobStatus, ProviderStatus
from compute_fabric.api.services.job_store import JobStore
from compute_fabric.api.services.settlement import SettlementConnector, round_money
from compute_fabric.containers import DEFAULT_CPU_LIMIT, DEFAULT_MEMORY_LIMIT, ContainerConfig, build_config
from compute_fabric.core.exceptions import Forbidden, InvalidInput, NotFound
from compute_fabric.core.logging import get_logger
from compute_fabric.core.time import Clock, utcnow
from compute_fabric.utils import metrics

LOGGER = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 10.0


@dataclass(frozen=True)
class Assignment:
    job: JobDB
    container_config: ContainerConfig


class JobRunner:
    """Coordinates job assignment between providers and the job queue."""

    def __init__(
        self,
        store: JobStore,
        settlement: SettlementConnector,
        *,
        clock: Clock = utcnow,
        failed_cost_factor: Any = "0.5",
        memory_limit: str = DEFAULT_MEMORY_LIMIT,
        cpu_limit: float = DEFAULT_CPU_LIMIT,
        config_builder: Callable[..., ContainerConfig] = build_config,
    ) -> None:
        self.store = store
        self.settlement = settlement
        self._clock = clock
        self.failed_cost_factor = Decimal(str(failed_cost_factor))
        self.memory_limit = memory_limit
        self.cpu_limit = cpu_limit
        self._config_builder = config_builder

        self._tick_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --- Lifecycle ---

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval_seconds: float = DEFAULT_INTERVAL_SECONDS) -> None:
        """Tick immediately, then once per ``interval_seconds`` on a daemon thread."""
        with self._lifecycle_lock:
            if self.is_running:
                LOGGER.info("JobRunner is already running")
                return
            LOGGER.info(f"Starting JobRunner with {interval_seconds}s polling interval")
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run,
                args=(interval_seconds,),
                name="job-runner",
                daemon=True,
            )
            self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop between ticks; an in-flight tick is allowed to finish."""
        with self._lifecycle_lock:
            thread = self._thread
            if thread is None or not thread.is_alive():
                LOGGER.info("JobRunner is not running")
                self._thread = None
                return
            LOGGER.info("Stopping JobRunner")
            self._stop_event.set()
            thread.join(timeout)
            self._thread = None

    def _run(self, interval_seconds: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                LOGGER.exception("Error processing job queue")
            if self._stop_event.wait(interval_seconds):
                break

    # --- Matching ---

    def tick(self) -> List[Assignment]:
        """One matching pass: at most one job per available provider."""
        with self._tick_lock, metrics.TICK_DURATION.time():
            providers = self.store.list_available_providers()
            if not providers:
                LOGGER.debug("No available providers found")
                return []

            assignments: List[Assignment] = []
            for provider in providers:
                assignment, end_pass = self._assign(provider.provider_id, source="tick")
                if end_pass:
                    LOGGER.debug("Ending matching pass")
                    break
                if assignment is not None:
                    assignments.append(assignment)

            metrics.JOB_QUEUE_DEPTH.set(self.store.count_jobs(JobStatus.QUEUED))
            if assignments:
                LOGGER.info(f"Tick assigned {len(assignments)} job(s) across {len(providers)} available provider(s)")
            return assignments

    def assign_next(self, provider_id: str) -> Optional[Assignment]:
        """Pull path: hand the oldest queued job to ``provider_id`` if it is free."""
        if self.store.get_provider(provider_id) is None:
            raise NotFound(f"Provider {provider_id} not found", metadata={"provider_id": provider_id})
        assignment, _ = self._assign(provider_id, source="pull")
        return assignment

    def _assign(self, provider_id: str, source: str) -> Tuple[Optional[Assignment], bool]:
        """Returns ``(assignment, end_pass)``.

        ``end_pass`` is set when the queue is empty, or when a job was requeued:
        it is still the oldest queued job, so later providers in the same pass
        would only claim and release it again.
        """
        # Reserve the provider before claiming so it never holds two active jobs.
        if not self.store.reserve_provider(provider_id):
            return None, False

        try:
            job = self.store.claim_next_queued_job(provider_id)
        except Exception:
            self.store.set_provider_status(provider_id, ProviderStatus.ONLINE)
            raise
        if job is None:
            self.store.set_provider_status(provider_id, ProviderStatus.ONLINE)
            return None, True

        try:
            config = self._config_builder(
                job.docker_image,
                job.command,
                memory_limit=self.memory_limit,
                cpu_limit=self.cpu_limit,
            )
        except InvalidInput as exc:
            LOGGER.warning(f"Container config for job {job.job_id} failed ({exc.message}); returning it to the queue")
            self.store.release_job(job.job_id)
            self.store.set_provider_status(provider_id, ProviderStatus.ONLINE)
            metrics.JOBS_REQUEUED_TOTAL.inc()
            return None, True

        metrics.JOBS_ASSIGNED_TOTAL.labels(source=source).inc()
        LOGGER.info(f"Job {job.job_id} assigned to provider {provider_id} via {source}")
        return Assignment(job=job, container_config=config), False

    # --- Completion handling ---

    def report_status(
        self,
        job_id: str,
        provider_id: str,
        status: Any,
        measured_minutes: Optional[float] = None,
    ) -> JobDB:
        try:
            new_status = JobStatus(status)
        except ValueError as exc:
            raise InvalidInput(f"Unknown job status {status!r}") from exc

        job = self.store.get_job(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found", metadata={"job_id": job_id})
        if job.provider_id != provider_id:
            raise Forbidden(
                f"Job {job_id} is not assigned to provider {provider_id}",
                metadata={"job_id": job_id, "provider_id": provider_id},
            )

        if new_status == JobStatus.RUNNING:
            return self.store.mark_running(job_id)
        if new_status == JobStatus.COMPLETED:
            return self._complete(job, provider_id, measured_minutes)
        if new_status == JobStatus.FAILED:
            return self._fail(job, provider_id)
        raise InvalidInput(f"Providers cannot report status '{new_status.value}'", metadata={"job_id": job_id})

    def _complete(self, job: JobDB, provider_id: str, measured_minutes: Optional[float]) -> JobDB:
        if measured_minutes is not None:
            cost = self.settlement.cost_for_minutes(measured_minutes)
        else:
            cost = self.settlement.compute_cost(job.started_at or self._clock(), self._clock())

        # The terminal transition is conditional: a duplicate report fails here, before charging.
        finished = self.store.mark_completed(job.job_id, cost)
        try:
            self.settlement.charge(job.job_id, job.user_id, cost, f"Compute job {job.job_id}")
        finally:
            self.store.set_provider_status(provider_id, ProviderStatus.ONLINE)
        metrics.JOBS_FINISHED_TOTAL.labels(status=JobStatus.COMPLETED.value).inc()
        LOGGER.info(f"Job {job.job_id} completed with cost {cost}")
        return finished

    def _fail(self, job: JobDB, provider_id: str) -> JobDB:
        minutes = self.settlement.elapsed_minutes(job.started_at or self._clock(), self._clock())
        cost = round_money(self.settlement.raw_cost_for_minutes(minutes) * self.failed_cost_factor)

        finished = self.store.mark_failed(job.job_id, cost)
        try:
            if cost > 0:
                self.settlement.charge(job.job_id, job.user_id, cost, f"Partial charge for failed job {job.job_id}")
        finally:
            self.store.set_provider_status(provider_id, ProviderStatus.ONLINE)
        metrics.JOBS_FINISHED_TOTAL.labels(status=JobStatus.FAILED.value).inc()
        LOGGER.info(f"Job {job.job_id} failed with partial cost {cost}")
        return finished


__all__ = ["Assignment", "DEFAULT_INTERVAL_SECONDS", "JobRunner"]
