"""
CLI Commands for chainworker.

Provides command-line interface using Click framework.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import asdict, dataclass

import click
from loguru import logger
from prometheus_client import start_http_server
from pydantic import ValidationError

from chainworker.blockchain import EmissionsConnector, SubstrateClient
from chainworker.config import ChainWorkerConfig, load_config
from chainworker.exceptions import ChainWorkerError
from chainworker.jobs import InferenceScheduler, JobQueue, PerformanceScheduler
from chainworker.monitoring import SubmissionMetrics, configure_logging
from chainworker.secret_store import SecretStore, create_secret_store
from chainworker.services import (
    ModelRegistrationRequest,
    PerformanceService,
    ProvisioningSaga,
    SubmissionGate,
    SubmissionPipeline,
    WalletProvisioner,
    WebhookSolicitor,
)
from chainworker.storage import PostgresStore


@dataclass
class Runtime:
    """Wired components shared by the commands."""
    config: ChainWorkerConfig
    metrics: SubmissionMetrics
    secrets: SecretStore
    store: PostgresStore
    chain: EmissionsConnector

    async def close(self) -> None:
        await self.store.close()
        close = getattr(self.secrets, "close", None)
        if close is not None:
            await close()
        self.chain.client.disconnect()


async def build_runtime(config: ChainWorkerConfig, bootstrap_db: bool = False) -> Runtime:
    metrics = SubmissionMetrics()
    store = PostgresStore(config.database)
    await store.initialize(bootstrap=bootstrap_db)
    chain = EmissionsConnector(
        SubstrateClient(config.chain),
        config.chain,
        config.submission,
        metrics=metrics,
    )
    return Runtime(
        config=config,
        metrics=metrics,
        secrets=create_secret_store(config),
        store=store,
        chain=chain,
    )


def _load(ctx) -> ChainWorkerConfig:
    return ctx.obj["settings"]


# Main CLI group
@click.group()
@click.version_option(version="0.1.0")
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx, config: str | None, verbose: bool):
    """
    chainworker - onboard ML worker models and submit their inferences on-chain.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["verbose"] = verbose

    try:
        settings = load_config(config)
    except (ValidationError, ValueError, FileNotFoundError) as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)
    ctx.obj["settings"] = settings

    # Configure logging
    configure_logging(
        log_level="DEBUG" if verbose else settings.logging.level,
        log_file=settings.logging.log_file,
        serialize=settings.logging.serialize,
    )


# Run command
@cli.command()
@click.option("--metrics-port", type=int, default=None, help="Expose Prometheus metrics on this port")
@click.option("--init-db/--no-init-db", default=True, help="Create missing tables on startup")
@click.pass_context
def run(ctx, metrics_port: int | None, init_db: bool):
    """Start the schedulers and the job queue."""
    config = _load(ctx)

    async def _run() -> None:
        runtime = await build_runtime(config, bootstrap_db=init_db)

        if metrics_port:
            start_http_server(metrics_port, registry=runtime.metrics.registry)
            logger.info(f"Prometheus metrics exposed on port {metrics_port}")

        pipeline = SubmissionPipeline(
            chain=runtime.chain,
            secrets=runtime.secrets,
            repository=runtime.store,
            solicitor=WebhookSolicitor(config.submission.webhook_timeout_seconds),
            metrics=runtime.metrics,
            default_gas_price=config.submission.default_gas_price,
        )
        queue = JobQueue(pipeline.run, config.jobs)
        inference_scheduler = InferenceScheduler(
            runtime.chain,
            runtime.store,
            queue,
            config.jobs,
            average_block_time_seconds=config.chain.average_block_time_seconds,
        )
        performance_scheduler = PerformanceScheduler(
            PerformanceService(runtime.chain, runtime.store),
            runtime.store,
            config.jobs,
        )

        await queue.start()
        await inference_scheduler.start()
        await performance_scheduler.start()
        logger.success("chainworker running")

        try:
            await asyncio.Event().wait()
        finally:
            await performance_scheduler.stop()
            await inference_scheduler.stop()
            await queue.stop()
            await runtime.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


# Model registration command
@cli.command(name="register-model")
@click.option("--user-id", required=True, help="Owner of the model")
@click.option("--webhook-url", required=True, help="Model webhook endpoint")
@click.option("--topic-id", type=int, required=True, help="Topic to submit to")
@click.option("--inferer/--no-inferer", default=True, help="Model produces inferences")
@click.option("--forecaster/--no-forecaster", default=False, help="Model produces forecasts")
@click.option("--max-gas-price", default=None, help="Gas price, e.g. 10uallo")
@click.pass_context
def register_model(
    ctx,
    user_id: str,
    webhook_url: str,
    topic_id: int,
    inferer: bool,
    forecaster: bool,
    max_gas_price: str | None,
):
    """Register a model: create, fund and register its wallet."""
    config = _load(ctx)

    try:
        request = ModelRegistrationRequest(
            user_id=user_id,
            webhook_url=webhook_url,
            topic_id=topic_id,
            is_inferer=inferer,
            is_forecaster=forecaster,
            max_gas_price=max_gas_price,
        )
    except ValidationError as e:
        logger.error(f"Invalid registration request: {e}")
        sys.exit(1)

    async def _register():
        runtime = await build_runtime(config)
        try:
            saga = ProvisioningSaga(
                chain=runtime.chain,
                secrets=runtime.secrets,
                wallets=WalletProvisioner(runtime.secrets, config.chain.ss58_format),
                repository=runtime.store,
                funding=config.funding,
                treasury_secret_key=config.secrets.treasury_secret_key,
                denom=config.chain.denom,
            )
            return await saga.register(request)
        finally:
            await runtime.close()

    try:
        result = asyncio.run(_register())
    except ChainWorkerError as e:
        logger.error(f"Registration failed: {e}")
        click.echo(e.public_message, err=True)
        sys.exit(1)

    click.echo(json.dumps(asdict(result), indent=2))


# Window check command
@cli.command(name="check-window")
@click.argument("topic_id", type=int)
@click.pass_context
def check_window(ctx, topic_id: int):
    """Evaluate the submission gate for TOPIC_ID and print the decision."""
    config = _load(ctx)

    async def _check():
        client = SubstrateClient(config.chain)
        chain = EmissionsConnector(client, config.chain, config.submission)
        try:
            return await SubmissionGate(chain).evaluate(topic_id)
        finally:
            client.disconnect()

    decision = asyncio.run(_check())
    click.echo(json.dumps({
        "topic_id": topic_id,
        "outcome": decision.outcome.value,
        "nonce_height": decision.nonce_height,
        "reason": decision.reason,
    }))


# Database bootstrap command
@cli.command(name="init-db")
@click.pass_context
def init_db(ctx):
    """Create missing tables and indexes."""
    config = _load(ctx)

    async def _init():
        store = PostgresStore(config.database)
        await store.initialize(bootstrap=True)
        await store.close()

    try:
        asyncio.run(_init())
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)

    logger.success("Database ready")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
