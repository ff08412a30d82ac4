"""Durable job and provider records with atomic state transitions.

Every mutation is a conditional ``UPDATE ... WHERE status IN (...)`` so that the
database arbitrates concurrent callers: of two schedulers racing for the same job,
exactly one sees ``rowcount == 1``.
"""

from __future__ import annotations

import threading
import time
import uuid
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from compute_fabric.api.database import Database, JobDB, ProviderDB
from compute_fabric.api.models import ACTIVE_JOB_STATUSES, JobStatus, ProviderStatus
from compute_fabric.api.services.settlement import round_money
from compute_fabric.containers import validate_image_reference
from compute_fabric.core.exceptions import (
    InvalidImage,
    InvalidInput,
    InvalidTransition,
    NotFound,
)
from compute_fabric.core.logging import get_logger
from compute_fabric.core.time import Clock, utcnow

LOGGER = get_logger(__name__)

MAX_CLAIM_ATTEMPTS = 10


_id_lock = threading.Lock()
_last_id_ns = 0


def _new_job_id() -> str:
    # Time-prefixed so ids sort in creation order when created_at ties.
    global _last_id_ns
    with _id_lock:
        _last_id_ns = max(time.time_ns(), _last_id_ns + 1)
        stamp = _last_id_ns
    return f"job_{stamp:016x}{uuid.uuid4().hex[:8]}"


class JobStore:
    """Sole owner of job and provider state."""

    def __init__(self, database: Database, clock: Clock = utcnow) -> None:
        self.database = database
        self._clock = clock

    # --- Jobs ---

    def create_job(self, user_id: str, image: str, command: Optional[str] = None) -> JobDB:
        if not user_id:
            raise InvalidInput("userId is required")
        if not image or not image.strip():
            raise InvalidInput("dockerImage is required", metadata={"field": "dockerImage"})
        if not validate_image_reference(image):
            raise InvalidImage(f"Invalid container image reference: {image!r}", metadata={"image": image})

        job = JobDB(
            job_id=_new_job_id(),
            user_id=user_id,
            docker_image=image,
            command=command or None,
            status=JobStatus.QUEUED,
            created_at=self._clock(),
            cost=Decimal("0.00"),
        )
        with self.database.transaction() as db:
            db.add(job)
        LOGGER.info(f"Job {job.job_id} queued for user {user_id} ({image})")
        return job

    def claim_next_queued_job(self, provider_id: str) -> Optional[JobDB]:
        """Atomically move the oldest queued job to ``assigned`` for ``provider_id``."""
        for _ in range(MAX_CLAIM_ATTEMPTS):
            with self.database.transaction() as db:
                candidate = db.execute(
                    select(JobDB.job_id)
                    .where(JobDB.status == JobStatus.QUEUED)
                    .order_by(JobDB.created_at.asc(), JobDB.job_id.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                ).scalar()
                if candidate is None:
                    return None

                result = db.execute(
                    update(JobDB)
                    .where(JobDB.job_id == candidate, JobDB.status == JobStatus.QUEUED)
                    .values(status=JobStatus.ASSIGNED, provider_id=provider_id, started_at=self._clock())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    job = db.get(JobDB, candidate)
                    LOGGER.info(f"Job {candidate} claimed by provider {provider_id}")
                    return job
            LOGGER.debug(f"Lost claim race for job {candidate}; retrying")

        LOGGER.warning(f"Provider {provider_id} gave up claiming after {MAX_CLAIM_ATTEMPTS} lost races")
        return None

    def _transition(
        self,
        job_id: str,
        from_statuses: Iterable[JobStatus],
        **values: Any,
    ) -> JobDB:
        allowed = list(from_statuses)
        with self.database.transaction() as db:
            result = db.execute(
                update(JobDB)
                .where(JobDB.job_id == job_id, JobDB.status.in_(allowed))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            job = db.get(JobDB, job_id)
            if job is None:
                raise NotFound(f"Job {job_id} not found", metadata={"job_id": job_id})
            if result.rowcount != 1:
                expected = ", ".join(status.value for status in allowed)
                raise InvalidTransition(
                    f"Job {job_id} is {job.status.value}; expected one of: {expected}",
                    metadata={"job_id": job_id, "status": job.status.value},
                )
        LOGGER.info(f"Job {job_id} -> {job.status.value}")
        return job

    def mark_running(self, job_id: str) -> JobDB:
        return self._transition(job_id, [JobStatus.ASSIGNED], status=JobStatus.RUNNING)

    def mark_completed(self, job_id: str, cost: Any) -> JobDB:
        return self._finish(job_id, JobStatus.COMPLETED, cost)

    def mark_failed(self, job_id: str, cost: Any) -> JobDB:
        return self._finish(job_id, JobStatus.FAILED, cost)

    def _finish(self, job_id: str, status: JobStatus, cost: Any) -> JobDB:
        amount = round_money(cost)
        if amount < 0:
            raise InvalidInput(f"Cost must be non-negative, got {amount}", metadata={"job_id": job_id})
        return self._transition(
            job_id,
            ACTIVE_JOB_STATUSES,
            status=status,
            finished_at=self._clock(),
            cost=amount,
        )

    def release_job(self, job_id: str) -> JobDB:
        """Return an assigned job to the queue after a failed hand-off."""
        return self._transition(
            job_id,
            [JobStatus.ASSIGNED],
            status=JobStatus.QUEUED,
            provider_id=None,
            started_at=None,
        )

    def get_job(self, job_id: str) -> Optional[JobDB]:
        with self.database.transaction() as db:
            return db.get(JobDB, job_id)

    def list_jobs_for_user(self, user_id: str, limit: int = 100, status: Optional[JobStatus] = None) -> List[JobDB]:
        return self._list_jobs(limit, status, user_id=user_id)

    def list_all_jobs(self, limit: int = 100, status: Optional[JobStatus] = None) -> List[JobDB]:
        return self._list_jobs(limit, status)

    def _list_jobs(self, limit: int, status: Optional[JobStatus], user_id: Optional[str] = None) -> List[JobDB]:
        if limit < 1:
            raise InvalidInput(f"limit must be positive, got {limit}")
        query = select(JobDB)
        if user_id is not None:
            query = query.where(JobDB.user_id == user_id)
        if status is not None:
            query = query.where(JobDB.status == status)
        query = query.order_by(JobDB.created_at.desc(), JobDB.job_id.desc()).limit(limit)
        with self.database.transaction() as db:
            return list(db.execute(query).scalars().all())

    def count_jobs(self, status: Optional[JobStatus] = None) -> int:
        query = select(func.count()).select_from(JobDB)
        if status is not None:
            query = query.where(JobDB.status == status)
        with self.database.transaction() as db:
            return int(db.execute(query).scalar() or 0)

    # --- Providers ---

    def register_provider(
        self,
        provider_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        capabilities: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ProviderDB, bool]:
        """Create or refresh a provider. Returns ``(provider, created)``."""
        specs = dict(capabilities or {})
        if provider_id:
            existing = self._refresh_provider(provider_id, owner_id, specs)
            if existing is not None:
                return existing, False

        provider = ProviderDB(
            provider_id=provider_id or str(uuid.uuid4()),
            owner_id=owner_id,
            status=ProviderStatus.ONLINE,
            gpu_specs=specs,
            created_at=self._clock(),
            updated_at=self._clock(),
        )
        try:
            with self.database.transaction() as db:
                db.add(provider)
        except IntegrityError:
            # Concurrent first registration of the same id won; treat ours as an update.
            existing = self._refresh_provider(provider.provider_id, owner_id, specs)
            if existing is None:
                raise
            return existing, False
        LOGGER.info(f"Provider {provider.provider_id} registered")
        return provider, True

    def _refresh_provider(self, provider_id: str, owner_id: Optional[str], specs: Dict[str, Any]) -> Optional[ProviderDB]:
        with self.database.transaction() as db:
            provider = db.get(ProviderDB, provider_id)
            if provider is None:
                return None
            provider.gpu_specs = specs
            if owner_id:
                provider.owner_id = owner_id
            # A busy provider keeps its status so it cannot be handed a second job.
            if provider.status != ProviderStatus.BUSY:
                provider.status = ProviderStatus.ONLINE
            provider.updated_at = self._clock()
        LOGGER.info(f"Provider {provider_id} re-registered ({provider.status.value})")
        return provider

    def get_provider(self, provider_id: str) -> Optional[ProviderDB]:
        with self.database.transaction() as db:
            return db.get(ProviderDB, provider_id)

    def list_providers(self) -> List[ProviderDB]:
        with self.database.transaction() as db:
            return list(
                db.execute(select(ProviderDB).order_by(ProviderDB.created_at.asc(), ProviderDB.provider_id.asc()))
                .scalars()
                .all()
            )

    def list_available_providers(self) -> List[ProviderDB]:
        """Online providers, oldest registration first."""
        query = (
            select(ProviderDB)
            .where(ProviderDB.status == ProviderStatus.ONLINE)
            .order_by(ProviderDB.created_at.asc(), ProviderDB.provider_id.asc())
        )
        with self.database.transaction() as db:
            return list(db.execute(query).scalars().all())

    def set_provider_status(self, provider_id: str, status: ProviderStatus) -> None:
        with self.database.transaction() as db:
            result = db.execute(
                update(ProviderDB)
                .where(ProviderDB.provider_id == provider_id)
                .values(status=status, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFound(f"Provider {provider_id} not found", metadata={"provider_id": provider_id})
        LOGGER.info(f"Provider {provider_id} -> {status.value}")

    def reserve_provider(self, provider_id: str) -> bool:
        """Flip an online provider to busy; False if it is not online."""
        with self.database.transaction() as db:
            result = db.execute(
                update(ProviderDB)
                .where(ProviderDB.provider_id == provider_id, ProviderDB.status == ProviderStatus.ONLINE)
                .values(status=ProviderStatus.BUSY, updated_at=self._clock())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return True
            if db.get(ProviderDB, provider_id) is None:
                raise NotFound(f"Provider {provider_id} not found", metadata={"provider_id": provider_id})
        return False


__all__ = ["JobStore", "MAX_CLAIM_ATTEMPTS"]
