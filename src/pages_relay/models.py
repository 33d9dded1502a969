from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, Field

# "after" sha of a push that deletes a branch
NULL_SHA = "0" * 40


class TriggerSource(StrEnum):
    github = "github"
    gitlab = "gitlab"
    manual = "manual"


class RunStatus(StrEnum):
    pending = "pending"
    running = "running"
    success = "success"
    failure = "failure"


class TriggerEvent(BaseModel):
    source: TriggerSource
    ref: str
    sha: str | None = None
    clone_url: str
    repository: str = ""


class StageResult(BaseModel):
    name: str
    kind: str
    status: RunStatus
    exit_code: int | None = None
    output: str = ""
    duration: float = 0.0


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunResult(BaseModel):
    run_id: str
    trigger: TriggerEvent
    status: RunStatus = RunStatus.pending
    failure: str | None = None
    message: str | None = None
    head_sha: str | None = None
    stages: list[StageResult] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_now)
    finished_at: datetime | None = None

    @property
    def failed_stage(self) -> StageResult | None:
        for stage in self.stages:
            if stage.status == RunStatus.failure:
                return stage
        return None
