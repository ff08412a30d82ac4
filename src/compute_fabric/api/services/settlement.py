"""Cost computation and payment execution for finished jobs.

Pricing model (pay-as-you-go):
- Users pay a flat per-minute rate for the time a provider holds their job.
- Providers earn a fixed share of what the user was charged.

The charging capability is a :class:`ChargeBackend`; a live Stripe backend and a
simulation backend implement it, and :func:`build_charge_backend` picks one at
construction time from settings.
"""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, List, Optional, Protocol

import requests
from sqlalchemy import select

from compute_fabric.api.config import Settings
from compute_fabric.api.database import Database, PaymentDB
from compute_fabric.api.models import PaymentStatus
from compute_fabric.core.exceptions import InvalidInput
from compute_fabric.core.logging import get_logger, log_with_context
from compute_fabric.core.time import Clock, utcnow
from compute_fabric.utils import metrics

LOGGER = get_logger(__name__)

CENTS = Decimal("0.01")
SECONDS_PER_MINUTE = Decimal(60)


def round_money(value: Any) -> Decimal:
    """Round half-up to two decimal places."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class ChargeOutcome:
    status: PaymentStatus
    error: Optional[str] = None
    reference: Optional[str] = None


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    amount: Decimal
    payment_id: Optional[str] = None
    error: Optional[str] = None
    simulated: bool = False


class ChargeBackend(Protocol):
    """Minimal surface required from a payment backend."""

    simulated: bool

    def charge(
        self,
        *,
        payment_id: str,
        job_id: str,
        user_id: str,
        amount: Decimal,
        description: str,
    ) -> ChargeOutcome: ...


class SimulatedChargeBackend:
    """Outcome drawn from a configured success probability; no money moves."""

    simulated = True

    def __init__(self, success_rate: float = 0.95, rng: Optional[random.Random] = None) -> None:
        if not 0 <= success_rate <= 1:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self._rng = rng or random.Random()

    def charge(self, *, payment_id: str, job_id: str, user_id: str, amount: Decimal, description: str) -> ChargeOutcome:
        LOGGER.info(f"Simulating payment of ${amount} for job {job_id}")
        if self._rng.random() < self.success_rate:
            return ChargeOutcome(PaymentStatus.SUCCEEDED, reference=f"sim_{payment_id}")
        return ChargeOutcome(PaymentStatus.FAILED, error="Simulated payment failure")


class StripeChargeBackend:
    """Create a Stripe PaymentIntent per charge over the REST API."""

    simulated = False

    def __init__(
        self,
        api_key: str,
        *,
        api_base: str = "https://api.stripe.com/v1",
        currency: str = "usd",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required for live charging")
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.currency = currency
        self.timeout = timeout
        self.session = session or requests.Session()

    def charge(self, *, payment_id: str, job_id: str, user_id: str, amount: Decimal, description: str) -> ChargeOutcome:
        payload = {
            "amount": int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP)),
            "currency": self.currency,
            "description": description,
            "metadata[jobId]": job_id,
            "metadata[userId]": user_id,
        }
        try:
            response = self.session.post(
                f"{self.api_base}/payment_intents",
                data=payload,
                auth=(self.api_key, ""),
                headers={"Idempotency-Key": payment_id},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            LOGGER.error(f"Stripe request failed for job {job_id}: {exc}")
            return ChargeOutcome(PaymentStatus.FAILED, error=str(exc))

        body = _json_or_empty(response)
        if response.status_code >= 400:
            error = body.get("error", {}).get("message") or f"Stripe returned HTTP {response.status_code}"
            if response.status_code == 402:
                LOGGER.info(f"Charge for job {job_id} declined: {error}")
            else:
                LOGGER.error(f"Stripe charge for job {job_id} failed: {error}")
            return ChargeOutcome(PaymentStatus.FAILED, error=error)

        intent_status = body.get("status")
        if intent_status == "succeeded":
            status = PaymentStatus.SUCCEEDED
        elif intent_status == "canceled":
            status = PaymentStatus.FAILED
        else:
            # requires_payment_method, processing, ...: settled later by the gateway
            status = PaymentStatus.PENDING
        return ChargeOutcome(status, reference=body.get("id"))


def _json_or_empty(response: requests.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def build_charge_backend(settings: Settings, rng: Optional[random.Random] = None) -> ChargeBackend:
    if settings.STRIPE_SECRET_KEY:
        return StripeChargeBackend(
            settings.STRIPE_SECRET_KEY,
            api_base=settings.STRIPE_API_BASE,
            currency=settings.PAYMENT_CURRENCY,
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        )
    LOGGER.warning("No payment secret configured; payment simulation mode enabled")
    return SimulatedChargeBackend(settings.SIMULATED_PAYMENT_SUCCESS_RATE, rng=rng)


class PaymentLedger:
    """Append-only payment records."""

    def __init__(self, database: Database, clock: Clock = utcnow) -> None:
        self.database = database
        self._clock = clock

    def record(self, job_id: str, amount: Decimal, status: PaymentStatus, *, simulated: bool, payment_id: Optional[str] = None) -> PaymentDB:
        payment = PaymentDB(
            payment_id=payment_id or str(uuid.uuid4()),
            job_id=job_id,
            amount=amount,
            status=status,
            simulated=simulated,
            created_at=self._clock(),
        )
        with self.database.transaction() as db:
            db.add(payment)
        return payment

    def list_for_job(self, job_id: str) -> List[PaymentDB]:
        query = select(PaymentDB).where(PaymentDB.job_id == job_id).order_by(PaymentDB.created_at.asc())
        with self.database.transaction() as db:
            return list(db.execute(query).scalars().all())


class SettlementConnector:
    def __init__(
        self,
        ledger: PaymentLedger,
        backend: ChargeBackend,
        *,
        rate_per_minute: Any = "0.10",
        payout_share: Any = "0.8",
    ) -> None:
        self.ledger = ledger
        self.backend = backend
        self._rate = Decimal(str(rate_per_minute))
        self._payout_share = Decimal(str(payout_share))
        if self._rate < 0:
            raise ValueError("rate_per_minute must be >= 0")
        if not 0 <= self._payout_share <= 1:
            raise ValueError("payout_share must be between 0 and 1")

    @property
    def simulated(self) -> bool:
        return self.backend.simulated

    def compute_rate(self) -> Decimal:
        """Price per minute of provider time."""
        # TODO: tiered pricing by GPU model once providers report normalized specs.
        return self._rate

    def raw_cost_for_minutes(self, minutes: Any) -> Decimal:
        minutes = max(Decimal(str(minutes)), Decimal(0))
        return minutes * self.compute_rate()

    def cost_for_minutes(self, minutes: Any) -> Decimal:
        return round_money(self.raw_cost_for_minutes(minutes))

    def elapsed_minutes(self, started_at: datetime, ended_at: datetime) -> Decimal:
        seconds = Decimal(str((ended_at - started_at).total_seconds()))
        return max(seconds / SECONDS_PER_MINUTE, Decimal(0))

    def compute_cost(self, started_at: datetime, ended_at: datetime) -> Decimal:
        return self.cost_for_minutes(self.elapsed_minutes(started_at, ended_at))

    def compute_provider_earnings(self, cost: Any) -> Decimal:
        return round_money(Decimal(str(cost)) * self._payout_share)

    def charge(self, job_id: str, user_id: str, amount: Any, description: str) -> PaymentResult:
        """Charge ``amount`` for ``job_id`` and record exactly one payment row.

        A zero amount is a no-op success. Declines come back as an unsuccessful
        result, never as an exception.
        """
        amount = round_money(amount)
        if amount < 0:
            raise InvalidInput(f"Charge amount must be non-negative, got {amount}", metadata={"job_id": job_id})
        if amount == 0:
            return PaymentResult(success=True, amount=amount, simulated=self.simulated)

        payment_id = str(uuid.uuid4())
        outcome = self.backend.charge(
            payment_id=payment_id,
            job_id=job_id,
            user_id=user_id,
            amount=amount,
            description=description,
        )
        self.ledger.record(job_id, amount, outcome.status, simulated=self.simulated, payment_id=payment_id)

        mode = "simulated" if self.simulated else "live"
        metrics.PAYMENTS_TOTAL.labels(status=outcome.status.value, mode=mode).inc()
        success = outcome.status != PaymentStatus.FAILED
        if success:
            metrics.CHARGED_AMOUNT.inc(float(amount))
        log_with_context(
            LOGGER,
            "info",
            f"Payment {payment_id} for job {job_id}: {outcome.status.value} (${amount}, {mode})",
            job_id=job_id,
            payment_id=payment_id,
            payment_status=outcome.status.value,
            amount=str(amount),
        )
        return PaymentResult(
            success=success,
            amount=amount,
            payment_id=payment_id,
            error=outcome.error,
            simulated=self.simulated,
        )


__all__ = [
    "ChargeBackend",
    "ChargeOutcome",
    "PaymentLedger",
    "PaymentResult",
    "SettlementConnector",
    "SimulatedChargeBackend",
    "StripeChargeBackend",
    "build_charge_backend",
    "round_money",
]
