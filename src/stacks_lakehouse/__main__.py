"""Command line entry point.

Usage:
    python -m stacks_lakehouse init-db
    python -m stacks_lakehouse trigger --stage full --api-key "$PIPELINE_API_KEY"
    python -m stacks_lakehouse trigger --stage marts --marts dim_blocks fact_daily_activity --api-key ...
    python -m stacks_lakehouse enrich-tokens
    python -m stacks_lakehouse register-contract SP3K8BC0PPEVCV7NZ6QSRWPQ2JE9E5B6N3PA0KBR9.token-abtc
    python -m stacks_lakehouse status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

from pydantic import ValidationError
from redis.asyncio import Redis

from stacks_lakehouse.config import Settings, get_settings
from stacks_lakehouse.discovery.contracts import ContractDiscovery
from stacks_lakehouse.enrichment.tokens import TokenEnrichmentWorker
from stacks_lakehouse.errors import ConfigurationError, DiscoveryConflict
from stacks_lakehouse.pipeline import Stage, build_stacks_client, describe_stages, run_pipeline
from stacks_lakehouse.storage.database import DatabaseManager
from stacks_lakehouse.storage.repos import PipelineRunRepository

logger = logging.getLogger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _init_db(settings: Settings) -> int:
    db = DatabaseManager.from_settings(settings.database)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    return 0


async def _trigger(settings: Settings, args: argparse.Namespace) -> int:
    credential = args.api_key or os.environ.get("PIPELINE_TRIGGER_KEY")
    outcome = await run_pipeline(args.stage, args.marts, credential=credential, settings=settings)
    _print_json(outcome.to_dict())
    return 0 if outcome.success else 1


async def _enrich_tokens(settings: Settings) -> int:
    db = DatabaseManager.from_settings(settings.database)
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    client = build_stacks_client(settings, redis=redis)
    enrichment = settings.enrichment
    try:
        async with db.get_async_session() as session:
            stats = await TokenEnrichmentWorker(
                session,
                client,
                batch_limit=enrichment.token_batch_limit,
                batch_size=enrichment.token_batch_size,
                batch_delay_seconds=enrichment.batch_delay_seconds,
                entity_timeout_seconds=enrichment.entity_timeout_seconds,
                call_timeout_seconds=enrichment.call_timeout_seconds,
                uri_timeout_seconds=enrichment.uri_timeout_seconds,
                ipfs_gateway=enrichment.ipfs_gateway,
            ).run_once()
    finally:
        await client.close()
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()
    _print_json(stats.as_dict())
    return 0


async def _register_contract(settings: Settings, contract_id: str) -> int:
    db = DatabaseManager.from_settings(settings.database)
    try:
        async with db.get_async_session() as session:
            await ContractDiscovery(session).register(contract_id)
    except ValueError as e:
        logger.error("%s", e)
        return 2
    except DiscoveryConflict as e:
        _print_json({"contract_id": contract_id, "inserted": False, "message": str(e)})
        return 0
    finally:
        await db.dispose_async()
    _print_json({"contract_id": contract_id, "inserted": True})
    return 0


async def _status(settings: Settings, limit: int) -> int:
    payload = describe_stages()
    db = DatabaseManager.from_settings(settings.database)
    try:
        async with db.get_async_session() as session:
            runs = await PipelineRunRepository(session).list_recent(limit=limit)
    finally:
        await db.dispose_async()
    payload["recent_runs"] = [
        {
            "run_id": r.run_id,
            "stage": r.stage,
            "status": r.status,
            "failed_step": r.failed_step,
            "started_at": r.started_at,
            "finished_at": r.finished_at,
        }
        for r in runs
    ]
    _print_json(payload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stacks-lakehouse", description="Stacks lakehouse pipeline")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create all tables (development; use alembic in production)")

    trigger = commands.add_parser("trigger", help="Run a pipeline stage")
    trigger.add_argument("--stage", choices=[s.value for s in Stage], default=Stage.FULL.value)
    trigger.add_argument("--marts", nargs="+", default=None, help="Mart names (with --stage marts)")
    trigger.add_argument("--api-key", default=None, help="Trigger secret (or PIPELINE_TRIGGER_KEY)")

    commands.add_parser("enrich-tokens", help="Run one token metadata enrichment pass")

    register = commands.add_parser("register-contract", help="Queue a contract for analysis by identifier")
    register.add_argument("contract_id")

    status = commands.add_parser("status", help="Describe stages and recent runs")
    status.add_argument("--limit", type=int, default=10)
    return parser


async def _dispatch(settings: Settings, args: argparse.Namespace) -> int:
    if args.command == "init-db":
        return await _init_db(settings)
    if args.command == "trigger":
        return await _trigger(settings, args)
    if args.command == "enrich-tokens":
        return await _enrich_tokens(settings)
    if args.command == "register-contract":
        return await _register_contract(settings, args.contract_id)
    return await _status(settings, args.limit)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        print(f"Invalid configuration: {problems}", file=sys.stderr)
        return 2
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings.validate_requirements(command=args.command)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2
    logger.debug("Settings: %s", settings.redacted_summary())
    return asyncio.run(_dispatch(settings, args))


if __name__ == "__main__":
    sys.exit(main())
