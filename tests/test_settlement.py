"""Tests for pricing, payment backends and the payment ledger."""

import random
from datetime import timedelta
from decimal import Decimal

import pytest
import requests

from compute_fabric.api.config import Settings
from compute_fabric.api.database import Database
from compute_fabric.api.models import PaymentStatus
from compute_fabric.api.services.settlement import (
    PaymentLedger,
    SettlementConnector,
    SimulatedChargeBackend,
    StripeChargeBackend,
    build_charge_backend,
    round_money,
)
from compute_fabric.core.exceptions import InvalidInput


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeSession:
    """Records requests and replays a canned response or exception."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def ledger(clock):
    database = Database("sqlite://")
    database.init_db()
    yield PaymentLedger(database, clock=clock)
    database.dispose()


def make_connector(ledger, backend=None):
    return SettlementConnector(
        ledger,
        backend or SimulatedChargeBackend(success_rate=1.0, rng=random.Random(1)),
        rate_per_minute="0.10",
        payout_share="0.8",
    )


class TestPricing:
    def test_round_money_half_up(self):
        assert round_money("0.005") == Decimal("0.01")
        assert round_money("0.004") == Decimal("0.00")
        assert round_money(1) == Decimal("1.00")

    def test_zero_duration_costs_nothing(self, ledger, clock):
        """A job that starts and ends at the same instant is free."""
        connector = make_connector(ledger)
        now = clock()
        assert connector.compute_cost(now, now) == Decimal("0.00")

    def test_cost_is_rate_times_minutes(self, ledger, clock):
        connector = make_connector(ledger)
        start = clock()
        assert connector.compute_cost(start, start + timedelta(minutes=10)) == Decimal("1.00")
        assert connector.compute_cost(start, start + timedelta(seconds=90)) == Decimal("0.15")

    def test_end_before_start_is_clamped(self, ledger, clock):
        connector = make_connector(ledger)
        start = clock()
        assert connector.compute_cost(start, start - timedelta(minutes=5)) == Decimal("0.00")

    def test_cost_for_measured_minutes(self, ledger):
        connector = make_connector(ledger)
        assert connector.cost_for_minutes(5) == Decimal("0.50")
        assert connector.cost_for_minutes(2.5) == Decimal("0.25")
        assert connector.cost_for_minutes(-3) == Decimal("0.00")

    def test_provider_earnings_share(self, ledger):
        connector = make_connector(ledger)
        assert connector.compute_provider_earnings(Decimal("1.00")) == Decimal("0.80")
        assert connector.compute_provider_earnings("0.50") == Decimal("0.40")
        assert connector.compute_provider_earnings(0) == Decimal("0.00")

    def test_rejects_invalid_configuration(self, ledger):
        with pytest.raises(ValueError):
            SettlementConnector(ledger, SimulatedChargeBackend(), rate_per_minute="-1")
        with pytest.raises(ValueError):
            SettlementConnector(ledger, SimulatedChargeBackend(), payout_share="1.5")


class TestCharge:
    def test_zero_amount_records_nothing(self, ledger):
        """Zero charges succeed without touching the backend or ledger."""
        session = FakeSession(error=AssertionError("backend must not be called"))
        connector = make_connector(ledger, StripeChargeBackend("sk_test", session=session))
        result = connector.charge("job_1", "user_1", 0, "Compute job job_1")
        assert result.success is True
        assert result.amount == Decimal("0.00")
        assert result.payment_id is None
        assert ledger.list_for_job("job_1") == []
        assert session.calls == []

    def test_negative_amount_rejected(self, ledger):
        connector = make_connector(ledger)
        with pytest.raises(InvalidInput):
            connector.charge("job_1", "user_1", "-0.50", "refund?")

    def test_simulated_success_records_one_payment(self, ledger):
        connector = make_connector(ledger)
        result = connector.charge("job_1", "user_1", "0.50", "Compute job job_1")
        assert result.success is True
        assert result.simulated is True

        payments = ledger.list_for_job("job_1")
        assert len(payments) == 1
        assert payments[0].payment_id == result.payment_id
        assert payments[0].amount == Decimal("0.50")
        assert payments[0].status == PaymentStatus.SUCCEEDED
        assert payments[0].simulated is True

    def test_simulated_failure_is_a_result_not_an_exception(self, ledger):
        connector = make_connector(ledger, SimulatedChargeBackend(success_rate=0.0))
        result = connector.charge("job_2", "user_1", "1.00", "Compute job job_2")
        assert result.success is False
        assert result.error == "Simulated payment failure"
        [payment] = ledger.list_for_job("job_2")
        assert payment.status == PaymentStatus.FAILED

    def test_simulated_backend_validates_rate(self):
        with pytest.raises(ValueError):
            SimulatedChargeBackend(success_rate=1.5)


class TestStripeBackend:
    def test_successful_intent(self, ledger):
        session = FakeSession(FakeResponse(200, {"id": "pi_123", "status": "succeeded"}))
        connector = make_connector(ledger, StripeChargeBackend("sk_test", session=session))

        result = connector.charge("job_1", "user_1", "0.50", "Compute job job_1")

        assert result.success is True
        assert result.simulated is False
        url, kwargs = session.calls[0]
        assert url == "https://api.stripe.com/v1/payment_intents"
        assert kwargs["data"]["amount"] == 50
        assert kwargs["data"]["currency"] == "usd"
        assert kwargs["data"]["metadata[jobId]"] == "job_1"
        assert kwargs["data"]["metadata[userId]"] == "user_1"
        assert kwargs["headers"]["Idempotency-Key"] == result.payment_id
        assert kwargs["auth"] == ("sk_test", "")

        [payment] = ledger.list_for_job("job_1")
        assert payment.status == PaymentStatus.SUCCEEDED
        assert payment.simulated is False

    def test_declined_card(self, ledger):
        session = FakeSession(FakeResponse(402, {"error": {"message": "Your card was declined."}}))
        connector = make_connector(ledger, StripeChargeBackend("sk_test", session=session))

        result = connector.charge("job_1", "user_1", "1.00", "Compute job job_1")

        assert result.success is False
        assert result.error == "Your card was declined."
        [payment] = ledger.list_for_job("job_1")
        assert payment.status == PaymentStatus.FAILED

    def test_server_error_without_body(self, ledger):
        session = FakeSession(FakeResponse(500))
        connector = make_connector(ledger, StripeChargeBackend("sk_test", session=session))
        result = connector.charge("job_1", "user_1", "1.00", "Compute job job_1")
        assert result.success is False
        assert result.error == "Stripe returned HTTP 500"

    def test_network_error(self, ledger):
        session = FakeSession(error=requests.ConnectionError("connection refused"))
        connector = make_connector(ledger, StripeChargeBackend("sk_test", session=session))
        result = connector.charge("job_1", "user_1", "1.00", "Compute job job_1")
        assert result.success is False
        assert "connection refused" in result.error
        assert len(ledger.list_for_job("job_1")) == 1

    def test_pending_intent_counts_as_success(self, ledger):
        """Intents still processing are recorded as pending."""
        session = FakeSession(FakeResponse(200, {"id": "pi_9", "status": "processing"}))
        connector = make_connector(ledger, StripeChargeBackend("sk_test", session=session))
        result = connector.charge("job_1", "user_1", "1.00", "Compute job job_1")
        assert result.success is True
        [payment] = ledger.list_for_job("job_1")
        assert payment.status == PaymentStatus.PENDING

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            StripeChargeBackend("")


class TestBackendSelection:
    def test_simulation_without_secret(self):
        backend = build_charge_backend(Settings(STRIPE_SECRET_KEY=None))
        assert isinstance(backend, SimulatedChargeBackend)
        assert backend.simulated is True

    def test_live_with_secret(self):
        backend = build_charge_backend(Settings(STRIPE_SECRET_KEY="sk_live_x", PAYMENT_CURRENCY="eur"))
        assert isinstance(backend, StripeChargeBackend)
        assert backend.currency == "eur"
        assert backend.simulated is False
