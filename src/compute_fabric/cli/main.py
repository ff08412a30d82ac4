"""Typer CLI entrypoint for ComputeFabric operators."""

from __future__ import annotations

from typing import Dict, List, Optional

import typer

from compute_fabric.api.config import get_settings
from compute_fabric.containers import build_config, render_run_command
from compute_fabric.core.exceptions import FabricError
from compute_fabric.core.logging import configure_logging, get_logger

LOGGER = get_logger(__name__)

app = typer.Typer(no_args_is_help=True, help="ComputeFabric orchestrator CLI")


def _parse_pairs(values: List[str], separator: str, label: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for value in values:
        key, sep, rest = value.partition(separator)
        if not sep or not key:
            raise typer.BadParameter(f"Expected {label} in the form KEY{separator}VALUE, got '{value}'")
        pairs[key] = rest
    return pairs


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(4000, help="Port to listen on"),
) -> None:
    """Run the orchestrator API (and its scheduler when enabled)."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, log_dir=settings.LOG_DIR, json_logs=settings.JSON_LOGS)
    LOGGER.info(f"Orchestrator server is running on port {port}")
    uvicorn.run("compute_fabric.api.main:create_app", factory=True, host=host, port=port)


@app.command()
def tick() -> None:
    """Run a single matching pass against the configured database."""
    from compute_fabric.api.dependencies import build_services

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, log_dir=settings.LOG_DIR, json_logs=settings.JSON_LOGS)
    services = build_services(settings)
    try:
        assignments = services.runner.tick()
    finally:
        services.shutdown()
    for assignment in assignments:
        typer.echo(f"{assignment.job.job_id} -> {assignment.job.provider_id}")
    typer.echo(f"Assigned {len(assignments)} job(s)")


@app.command("render-config")
def render_config(
    image: str = typer.Argument(..., help="Container image reference"),
    command: Optional[str] = typer.Option(None, "--command", "-c", help="Command to run in the container"),
    env: List[str] = typer.Option([], "--env", "-e", help="Environment variable KEY=VALUE"),
    volume: List[str] = typer.Option([], "--volume", "-v", help="Volume HOST:CONTAINER"),
    gpu: bool = typer.Option(True, "--gpu/--no-gpu", help="Request GPU access"),
) -> None:
    """Validate a run configuration and print the equivalent docker command."""
    settings = get_settings()
    try:
        config = build_config(
            image,
            command,
            env=_parse_pairs(env, "=", "--env"),
            volumes=_parse_pairs(volume, ":", "--volume"),
            gpu_requested=gpu,
            memory_limit=settings.CONTAINER_MEMORY_LIMIT,
            cpu_limit=settings.CONTAINER_CPU_LIMIT,
        )
    except FabricError as exc:
        typer.echo(f"Error: {exc.message}", err=True)
        raise typer.Exit(code=2) from exc
    typer.echo(render_run_command(config))


@app.command()
def cost(minutes: float = typer.Argument(..., min=0, help="Execution time in minutes")) -> None:
    """Print the job cost and provider earnings for a duration."""
    from compute_fabric.api.database import Database
    from compute_fabric.api.services.settlement import PaymentLedger, SettlementConnector, SimulatedChargeBackend

    settings = get_settings()
    # Pricing only; the in-memory ledger is never written.
    settlement = SettlementConnector(
        PaymentLedger(Database("sqlite://")),
        SimulatedChargeBackend(),
        rate_per_minute=settings.COMPUTE_RATE_PER_MINUTE,
        payout_share=settings.PROVIDER_PAYOUT_SHARE,
    )
    total = settlement.cost_for_minutes(minutes)
    typer.echo(f"rate: {settlement.compute_rate()}/min")
    typer.echo(f"cost: {total}")
    typer.echo(f"provider earnings: {settlement.compute_provider_earnings(total)}")


if __name__ == "__main__":
    app()
