"""Pipeline orchestrator for the Stacks lakehouse.

This module sequences the transformation steps behind a single trigger
operation. Every step writes one destination relation with an explicit
disposition, runs in its own database session under a timeout, and commits
when it completes. The first failing step aborts the rest of the run;
steps that already committed are left in place.

Stages:
    staging: raw events -> the four staging relations
    marts:   staging -> analytical marts (all, or a named subset)
    full:    staging -> contract discovery/analysis/classification ->
             token discovery -> marts
"""

from __future__ import annotations

import asyncio
import dataclasses
import hmac
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from redis.asyncio import Redis

from stacks_lakehouse.classifier.service import ContractClassifier
from stacks_lakehouse.config import EnrichmentSettings, PipelineSettings, Settings, get_settings
from stacks_lakehouse.discovery.contracts import ContractDiscovery
from stacks_lakehouse.discovery.tokens import TokenDiscovery
from stacks_lakehouse.enrichment.contracts import ContractAnalysisWorker
from stacks_lakehouse.enrichment.stacks_client import StacksApiClient
from stacks_lakehouse.errors import ConfigurationError, StepFailure
from stacks_lakehouse.marts.registry import MART_NAMES, MARTS, refresh_mart
from stacks_lakehouse.staging.models import StagingRelation
from stacks_lakehouse.staging.transformer import StagingTransformer
from stacks_lakehouse.storage.database import DatabaseManager
from stacks_lakehouse.storage.repos import PipelineRunDTO, PipelineRunRepository, WriteDisposition

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

SessionProvider = Callable[[], AbstractAsyncContextManager["AsyncSession"]]
StepAction = Callable[["AsyncSession"], Awaitable[Any]]


class Stage(str, Enum):
    """Trigger stages."""

    FULL = "full"
    STAGING = "staging"
    MARTS = "marts"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


STAGE_DESCRIPTIONS = {
    Stage.FULL: "Staging, contract discovery, analysis and classification, token discovery, then all marts",
    Stage.STAGING: "Raw events into the four staging relations",
    Stage.MARTS: "All analytical marts, or the subset named in 'marts'",
}


@dataclass(frozen=True)
class PipelineStep:
    """One named step writing one destination relation."""

    name: str
    destination: str
    disposition: WriteDisposition
    action: StepAction
    timeout_seconds: float


@dataclass
class StepResult:
    name: str
    destination: str
    disposition: WriteDisposition
    status: RunStatus
    started_at: datetime
    finished_at: datetime
    detail: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def to_record(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "destination": self.destination,
            "disposition": self.disposition.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "detail": self.detail,
            "error": self.error,
        }


@dataclass(frozen=True)
class PipelineOutcome:
    """Structured result of a trigger; never raised, always returned."""

    success: bool
    stage: str
    run_id: str | None = None
    marts: tuple[str, ...] | None = None
    message: str | None = None
    error: str | None = None
    failed_step: str | None = None
    unauthorized: bool = False
    steps: tuple[StepResult, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "stage": self.stage, "run_id": self.run_id}
        if self.marts is not None:
            payload["marts"] = list(self.marts)
        if self.success:
            payload["message"] = self.message
        else:
            payload["error"] = self.error
            if self.failed_step:
                payload["failed_step"] = self.failed_step
        payload["steps"] = [s.to_record() for s in self.steps]
        return payload


def describe_stages() -> dict[str, Any]:
    """Read-only description of the trigger contract."""
    return {
        "stages": {stage.value: description for stage, description in STAGE_DESCRIPTIONS.items()},
        "marts": list(MART_NAMES),
    }


def resolve_marts(marts: Sequence[str] | None) -> tuple[str, ...]:
    """Validate requested mart names, keeping request order and dropping repeats.

    Raises:
        ValueError: If any name is not a known mart.
    """
    if not marts:
        return MART_NAMES
    unknown = [m for m in marts if m not in MARTS]
    if unknown:
        raise ValueError(f"Unknown mart(s): {', '.join(unknown)}. Available marts: {', '.join(MART_NAMES)}")
    return tuple(dict.fromkeys(marts))


def _summarize(result: Any) -> dict[str, Any]:
    if result is None:
        return {}
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        return dataclasses.asdict(result)
    if isinstance(result, int):
        return {"rows": result}
    return {"result": str(result)}


class PipelineOrchestrator:
    """Plans and executes stages against a database and a Stacks API client.

    Example:
        ```python
        db = DatabaseManager.from_settings(settings.database)
        async with StacksApiClient(settings.stacks_api.base_url) as client:
            orchestrator = PipelineOrchestrator(db.get_async_session, client)
            outcome = await orchestrator.execute(Stage.MARTS, ["dim_blocks"])
        ```
    """

    def __init__(
        self,
        sessions: SessionProvider,
        client: StacksApiClient,
        *,
        pipeline_settings: PipelineSettings | None = None,
        enrichment_settings: EnrichmentSettings | None = None,
    ) -> None:
        self._sessions = sessions
        self._client = client
        self._settings = pipeline_settings or PipelineSettings()
        self._enrichment = enrichment_settings or EnrichmentSettings()

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, stage: Stage, marts: Sequence[str] | None = None) -> list[PipelineStep]:
        """Ordered steps for a stage.

        Raises:
            ValueError: If a requested mart name is unknown.
        """
        mart_names = resolve_marts(marts if stage == Stage.MARTS else None)
        if stage == Stage.STAGING:
            return self._staging_steps()
        if stage == Stage.MARTS:
            return self._mart_steps(mart_names)
        return [*self._staging_steps(), *self._catalogue_steps(), *self._mart_steps(mart_names)]

    def _staging_steps(self) -> list[PipelineStep]:
        def stage(relation: StagingRelation) -> StepAction:
            return lambda session: StagingTransformer(session).run([relation])

        return [
            PipelineStep(
                name=relation.value,
                destination=relation.value,
                disposition=WriteDisposition.MERGE,
                action=stage(relation),
                timeout_seconds=self._settings.step_timeout_seconds,
            )
            for relation in StagingRelation
        ]

    def _catalogue_steps(self) -> list[PipelineStep]:
        window = self._settings.discovery_window_minutes
        enrichment = self._enrichment
        return [
            PipelineStep(
                name="discover_contracts",
                destination="contracts",
                disposition=WriteDisposition.APPEND,
                action=lambda session: ContractDiscovery(session, report_window_minutes=window).run(),
                timeout_seconds=self._settings.catalog_step_timeout_seconds,
            ),
            PipelineStep(
                name="analyze_contracts",
                destination="contracts",
                disposition=WriteDisposition.MERGE,
                action=lambda session: ContractAnalysisWorker(
                    session,
                    self._client,
                    batch_limit=enrichment.contract_batch_limit,
                    concurrency=enrichment.contract_concurrency,
                    call_timeout_seconds=enrichment.call_timeout_seconds,
                    # Room for one worst-case batch after the last start.
                    time_budget_seconds=max(self._settings.step_timeout_seconds - enrichment.call_timeout_seconds, 0.0),
                ).run_once(),
                timeout_seconds=self._settings.step_timeout_seconds,
            ),
            PipelineStep(
                name="classify_contracts",
                destination="contracts",
                disposition=WriteDisposition.MERGE,
                action=lambda session: ContractClassifier(
                    session, window_days=self._settings.feature_window_days
                ).run(),
                timeout_seconds=self._settings.catalog_step_timeout_seconds,
            ),
            PipelineStep(
                name="discover_tokens",
                destination="tokens",
                disposition=WriteDisposition.APPEND,
                action=lambda session: TokenDiscovery(session, report_window_minutes=window).run(),
                timeout_seconds=self._settings.catalog_step_timeout_seconds,
            ),
        ]

    def _mart_steps(self, names: Sequence[str]) -> list[PipelineStep]:
        def build(name: str) -> StepAction:
            return lambda session: refresh_mart(session, name)

        return [
            PipelineStep(
                name=name,
                destination=name,
                disposition=WriteDisposition.OVERWRITE,
                action=build(name),
                timeout_seconds=self._settings.step_timeout_seconds,
            )
            for name in names
        ]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_step(self, step: PipelineStep) -> StepResult:
        """Run one step in its own session.

        Raises:
            StepFailure: If the step raises or exceeds its timeout.
        """
        started = datetime.now(UTC)
        logger.info("Running step %s -> %s (%s)", step.name, step.destination, step.disposition.value)
        budget = asyncio.timeout(step.timeout_seconds)
        try:
            async with self._sessions() as session, budget:
                result = await step.action(session)
        except TimeoutError as e:
            if not budget.expired():
                # Raised by the step itself, e.g. an unwrapped client timeout.
                logger.exception("Step %s failed", step.name)
                raise StepFailure(step.name, e) from e
            logger.error("Step %s timed out after %.0fs", step.name, step.timeout_seconds)
            raise StepFailure(step.name, f"timed out after {step.timeout_seconds:g}s") from e
        except Exception as e:
            logger.exception("Step %s failed", step.name)
            raise StepFailure(step.name, e) from e

        finished = datetime.now(UTC)
        logger.info("Step %s completed in %.2fs", step.name, (finished - started).total_seconds())
        return StepResult(
            name=step.name,
            destination=step.destination,
            disposition=step.disposition,
            status=RunStatus.SUCCEEDED,
            started_at=started,
            finished_at=finished,
            detail=_summarize(result),
        )

    async def execute(self, stage: Stage, marts: Sequence[str] | None = None) -> PipelineOutcome:
        """Plan and run a stage, recording it as a pipeline run."""
        try:
            steps = self.plan(stage, marts)
        except ValueError as e:
            return PipelineOutcome(success=False, stage=stage.value, error=str(e))

        requested_marts = resolve_marts(marts) if stage == Stage.MARTS else None
        if marts and stage != Stage.MARTS:
            logger.warning("Ignoring mart list for stage %s", stage.value)

        run = PipelineRunDTO(
            run_id=str(uuid.uuid4()),
            stage=stage.value,
            status=RunStatus.RUNNING.value,
            started_at=datetime.now(UTC),
            marts=list(requested_marts) if requested_marts is not None else None,
        )
        await self._save_run(run)
        logger.info("Pipeline run %s started: stage=%s, %d step(s)", run.run_id, stage.value, len(steps))

        results: list[StepResult] = []
        for step in steps:
            step_started = datetime.now(UTC)
            try:
                results.append(await self._run_step(step))
            except StepFailure as e:
                results.append(
                    StepResult(
                        name=step.name,
                        destination=step.destination,
                        disposition=step.disposition,
                        status=RunStatus.FAILED,
                        started_at=step_started,
                        finished_at=datetime.now(UTC),
                        error=str(e),
                    )
                )
                await self._finalize(run, results, RunStatus.FAILED, failed_step=e.step, error=str(e))
                return PipelineOutcome(
                    success=False,
                    stage=stage.value,
                    run_id=run.run_id,
                    marts=requested_marts,
                    error=str(e),
                    failed_step=e.step,
                    steps=tuple(results),
                )

        await self._finalize(run, results, RunStatus.SUCCEEDED)
        return PipelineOutcome(
            success=True,
            stage=stage.value,
            run_id=run.run_id,
            marts=requested_marts,
            message=f"Stage '{stage.value}' completed: {len(results)} step(s) succeeded",
            steps=tuple(results),
        )

    async def _save_run(self, run: PipelineRunDTO) -> None:
        async with self._sessions() as session:
            await PipelineRunRepository(session).save(run)

    async def _finalize(
        self,
        run: PipelineRunDTO,
        results: Sequence[StepResult],
        status: RunStatus,
        *,
        failed_step: str | None = None,
        error: str | None = None,
    ) -> None:
        run.status = status.value
        run.steps = [r.to_record() for r in results]
        run.failed_step = failed_step
        run.error = error
        run.finished_at = datetime.now(UTC)
        try:
            await self._save_run(run)
        except Exception as e:
            logger.error("Failed to finalize pipeline run %s: %s", run.run_id, e)
        duration = (run.finished_at - run.started_at) / timedelta(seconds=1)
        logger.info("Pipeline run %s %s in %.2fs", run.run_id, status.value, duration)


def authorize(credential: str | None, settings: PipelineSettings) -> bool:
    """Constant-time check of a trigger credential against the configured secret.

    Raises:
        ConfigurationError: If no trigger secret is configured.
    """
    if settings.api_key is None or not settings.api_key.get_secret_value():
        raise ConfigurationError("PIPELINE_API_KEY is not configured; pipeline triggers are disabled")
    if not credential:
        return False
    return hmac.compare_digest(credential.encode(), settings.api_key.get_secret_value().encode())


async def run_pipeline(
    stage: str | Stage,
    marts: Sequence[str] | None = None,
    *,
    credential: str | None,
    settings: Settings | None = None,
    orchestrator: PipelineOrchestrator | None = None,
) -> PipelineOutcome:
    """Authorize and run one stage, always returning a structured outcome.

    Args:
        stage: ``full``, ``staging`` or ``marts``.
        marts: Mart names to refresh; only used with the ``marts`` stage.
        credential: Caller-supplied trigger secret.
        settings: Application settings; ``get_settings()`` when omitted.
        orchestrator: Pre-built orchestrator. When omitted, database and API
            resources are created from ``settings`` and released afterwards.
    """
    stage_name = stage.value if isinstance(stage, Stage) else str(stage)
    try:
        settings = settings or get_settings()
        if not authorize(credential, settings.pipeline):
            logger.warning("Rejected pipeline trigger for stage %s: bad credential", stage_name)
            return PipelineOutcome(success=False, stage=stage_name, error="Unauthorized", unauthorized=True)
    except (ConfigurationError, ValidationError) as e:
        logger.error("Pipeline trigger refused: %s", e)
        return PipelineOutcome(success=False, stage=stage_name, error=str(e))

    try:
        selected = Stage(stage_name)
    except ValueError:
        valid = ", ".join(s.value for s in Stage)
        return PipelineOutcome(success=False, stage=stage_name, error=f"Invalid stage '{stage_name}'. Use: {valid}")

    if orchestrator is not None:
        return await _execute_guarded(orchestrator, selected, marts)

    db = DatabaseManager.from_settings(settings.database)
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    client = build_stacks_client(settings, redis=redis)
    try:
        built = PipelineOrchestrator(
            db.get_async_session,
            client,
            pipeline_settings=settings.pipeline,
            enrichment_settings=settings.enrichment,
        )
        return await _execute_guarded(built, selected, marts)
    finally:
        await client.close()
        if redis is not None:
            await redis.aclose()
        await db.dispose_async()


async def _execute_guarded(
    orchestrator: PipelineOrchestrator,
    stage: Stage,
    marts: Sequence[str] | None,
) -> PipelineOutcome:
    try:
        return await orchestrator.execute(stage, marts)
    except Exception as e:
        logger.exception("Pipeline run for stage %s aborted", stage.value)
        return PipelineOutcome(success=False, stage=stage.value, error=str(e) or type(e).__name__)


def build_stacks_client(settings: Settings, *, redis: Redis | None = None) -> StacksApiClient:
    """Stacks API client configured from settings."""
    api_key = settings.stacks_api.api_key.get_secret_value() if settings.stacks_api.api_key else None
    return StacksApiClient(
        settings.stacks_api.base_url,
        api_key=api_key,
        redis=redis,
        max_requests_per_second=settings.stacks_api.max_requests_per_second,
        request_timeout=settings.stacks_api.request_timeout_seconds,
        ipfs_gateway=settings.enrichment.ipfs_gateway,
    )
