"""Service wiring shared by the API routers.

Services are constructed once per application by :func:`build_services` and
stored on ``app.state``; routers reach them through the dependencies below.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from compute_fabric.api.config import Settings
from compute_fabric.api.database import Database
from compute_fabric.api.services.job_runner import JobRunner
from compute_fabric.api.services.job_store import JobStore
from compute_fabric.api.services.settlement import (
    ChargeBackend,
    PaymentLedger,
    SettlementConnector,
    build_charge_backend,
)
from compute_fabric.core.time import Clock, utcnow


@dataclass
class Services:
    settings: Settings
    database: Database
    store: JobStore
    ledger: PaymentLedger
    settlement: SettlementConnector
    runner: JobRunner

    def shutdown(self) -> None:
        self.runner.stop()
        self.database.dispose()


def build_services(
    settings: Settings,
    *,
    clock: Clock = utcnow,
    charge_backend: Optional[ChargeBackend] = None,
    rng: Optional[random.Random] = None,
) -> Services:
    database = Database(settings.DATABASE_URL)
    database.init_db()

    store = JobStore(database, clock=clock)
    ledger = PaymentLedger(database, clock=clock)
    settlement = SettlementConnector(
        ledger,
        charge_backend or build_charge_backend(settings, rng=rng),
        rate_per_minute=settings.COMPUTE_RATE_PER_MINUTE,
        payout_share=settings.PROVIDER_PAYOUT_SHARE,
    )
    runner = JobRunner(
        store,
        settlement,
        clock=clock,
        failed_cost_factor=settings.FAILED_JOB_COST_FACTOR,
        memory_limit=settings.CONTAINER_MEMORY_LIMIT,
        cpu_limit=settings.CONTAINER_CPU_LIMIT,
    )
    return Services(
        settings=settings,
        database=database,
        store=store,
        ledger=ledger,
        settlement=settlement,
        runner=runner,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_settings_dep(request: Request) -> Settings:
    return get_services(request).settings


def get_job_store(request: Request) -> JobStore:
    return get_services(request).store


def get_job_runner(request: Request) -> JobRunner:
    return get_services(request).runner


def get_settlement(request: Request) -> SettlementConnector:
    return get_services(request).settlement
