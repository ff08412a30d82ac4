import os
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# Never reach a live payment gateway from tests
os.environ.pop("STRIPE_SECRET_KEY", None)

from compute_fabric.api.config import Settings  # noqa: E402
from compute_fabric.api.dependencies import build_services  # noqa: E402
from compute_fabric.api.main import create_app  # noqa: E402
from compute_fabric.api.services.settlement import SimulatedChargeBackend  # noqa: E402

START = datetime(2024, 1, 1, 12, 0, 0)


class FakeClock:
    """Manually advanced clock injected wherever the engine reads the time."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        SCHEDULER_ENABLED=False,
        STRIPE_SECRET_KEY=None,
        SIMULATED_PAYMENT_SUCCESS_RATE=1.0,
    )


@pytest.fixture
def services(settings, clock):
    built = build_services(
        settings,
        clock=clock,
        charge_backend=SimulatedChargeBackend(success_rate=1.0, rng=random.Random(7)),
    )
    yield built
    built.shutdown()


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def runner(services):
    return services.runner


@pytest.fixture
def settlement(services):
    return services.settlement


@pytest.fixture
def app(settings, clock):
    return create_app(
        settings,
        clock=clock,
        charge_backend=SimulatedChargeBackend(success_rate=1.0, rng=random.Random(7)),
    )


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
