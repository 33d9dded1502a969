import asyncio
import time
import uuid
from collections.abc import MutableMapping
from datetime import datetime, timezone
from pathlib import Path

from sanic.log import logger

from pages_relay import metrics
from pages_relay.checkout import checkout
from pages_relay.config import Config
from pages_relay.environment import Environment
from pages_relay.exceptions import (
    BuildFailure,
    DependencyInstallFailure,
    PipelineError,
)
from pages_relay.models import RunResult, RunStatus, StageResult, TriggerEvent
from pages_relay.pipeline import PipelineDefinition, Stage, StageKind
from pages_relay.publish import publish_tree
from pages_relay.utils import run_command

STEP_FAILURES = {
    StageKind.install: DependencyInstallFailure,
    StageKind.build: BuildFailure,
}

_destination_locks: dict[str, asyncio.Lock] = {}


def destination_lock(destination: Path) -> asyncio.Lock:
    """
    One lock per resolved destination, shared by every runner in the process.

    The lock is per process only. Serve the app with a single worker; runs in
    separate Sanic workers are not serialized against each other.
    """
    key = str(destination.resolve())
    if key not in _destination_locks:
        _destination_locks[key] = asyncio.Lock()
    return _destination_locks[key]


class PipelineRunner:
    def __init__(
        self,
        config: Config,
        pipeline: PipelineDefinition,
        environment: Environment,
        history: MutableMapping[str, RunResult] | None = None,
    ):
        self.config = config
        self.pipeline = pipeline
        self.environment = environment
        self.history = history if history is not None else {}

    @property
    def workspace(self) -> Path:
        return Path(self.config.WORKSPACE_ROOT).expanduser() / self.pipeline.name

    @property
    def destination(self) -> Path:
        return self.pipeline.destination_path()

    async def run(self, trigger: TriggerEvent) -> RunResult:
        result = RunResult(run_id=uuid.uuid4().hex, trigger=trigger)
        self.history[result.run_id] = result

        lock = destination_lock(self.destination)
        if lock.locked():
            logger.info(
                "Run %s waiting for a previous run on %s",
                result.run_id,
                self.destination,
            )

        async with lock:
            logger.info(
                "Starting run %s of %s for %s@%s",
                result.run_id,
                self.pipeline.name,
                trigger.ref,
                trigger.sha,
            )
            result.status = RunStatus.running
            start = time.time()
            metrics.pipeline_runs_in_progress.inc()
            try:
                environment_ready = False
                for stage in self.pipeline.stages:
                    if stage.steps and not environment_ready:
                        await self._prepare_environment(result)
                        environment_ready = True
                    await self._run_stage(stage, trigger, result)
                result.status = RunStatus.success
                logger.info("Run %s succeeded", result.run_id)
            except PipelineError as e:
                result.status = RunStatus.failure
                result.failure = type(e).__name__
                result.message = str(e)
                logger.error(
                    "Run %s failed in stage %s: %s\n%s",
                    result.run_id,
                    e.stage,
                    e,
                    e.output,
                )
            except Exception as e:
                result.status = RunStatus.failure
                result.failure = type(e).__name__
                result.message = str(e)
                raise
            finally:
                metrics.pipeline_runs_in_progress.dec()
                metrics.pipeline_run_duration_seconds.observe(time.time() - start)
                result.finished_at = datetime.now(timezone.utc)
                metrics.pipeline_runs_total.labels(
                    result.status, result.failure or "none"
                ).inc()

        return result

    async def _prepare_environment(self, result: RunResult):
        start = time.time()
        try:
            with metrics.track_stage("environment"):
                tag = await self.environment.ensure()
        except PipelineError as e:
            result.stages.append(
                StageResult(
                    name="environment",
                    kind="environment",
                    status=RunStatus.failure,
                    output=e.output,
                    duration=time.time() - start,
                )
            )
            raise
        if tag is not None:
            result.stages.append(
                StageResult(
                    name="environment",
                    kind="environment",
                    status=RunStatus.success,
                    output=tag,
                    duration=time.time() - start,
                )
            )

    async def _run_stage(self, stage: Stage, trigger: TriggerEvent, result: RunResult):
        logger.debug("Run %s: stage %s (%s)", result.run_id, stage.name, stage.kind)
        start = time.time()
        stage_result = StageResult(
            name=stage.name, kind=stage.kind, status=RunStatus.running
        )
        result.stages.append(stage_result)

        try:
            with metrics.track_stage(stage.kind):
                if stage.kind == StageKind.checkout:
                    result.head_sha = await asyncio.to_thread(
                        checkout,
                        trigger.clone_url,
                        self.config.WATCHED_BRANCH,
                        self.workspace,
                    )
                    stage_result.output = result.head_sha
                elif stage.kind == StageKind.publish:
                    await asyncio.to_thread(
                        publish_tree,
                        self.workspace / self.pipeline.output_dir,
                        self.destination,
                        self.config.PUBLISH_MODE,
                    )
                else:
                    await self._run_steps(stage, stage_result)
        except PipelineError as e:
            stage_result.status = RunStatus.failure
            if e.output and e.output not in stage_result.output:
                stage_result.output += e.output
            raise
        finally:
            stage_result.duration = time.time() - start

        stage_result.status = RunStatus.success

    async def _run_steps(self, stage: Stage, stage_result: StageResult):
        error_cls = STEP_FAILURES[stage.kind]
        for step in stage.steps:
            logger.debug("Step %s: %s", step.name, step.run)
            code, output = await self._run_command(
                self.environment.wrap(step.run, self.workspace)
            )
            stage_result.output += output
            stage_result.exit_code = code
            if code != 0:
                raise error_cls(
                    f"Step {step.name!r} exited with status {code}",
                    stage=stage.name,
                    output=output,
                )

    async def _run_command(self, argv: list[str]) -> tuple[int, str]:
        return await run_command(
            argv, cwd=self.workspace, timeout=self.config.STEP_TIMEOUT
        )
