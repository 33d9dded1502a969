"""
Pipeline definitions.

A pipeline is an ordered list of named stages. Each stage has a kind which
fixes what the runner does with it: ``checkout`` and ``publish`` are handled
by the runner itself, ``install`` and ``build`` run their shell steps in order.
"""

import tomllib
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from pages_relay.config import Config
from pages_relay.exceptions import InvalidPipelineError


class StageKind(StrEnum):
    checkout = "checkout"
    install = "install"
    build = "build"
    publish = "publish"


STAGE_ORDER = list(StageKind)


class Step(BaseModel):
    name: str
    run: str


class Stage(BaseModel):
    name: str
    kind: StageKind
    steps: list[Step] = []

    @field_validator("steps", mode="before")
    @classmethod
    def _expand_shorthand(cls, value):
        # a bare string is a step named after its command
        if isinstance(value, list):
            return [
                {"name": item, "run": item} if isinstance(item, str) else item
                for item in value
            ]
        return value

    @model_validator(mode="after")
    def _check_steps(self):
        if self.kind in (StageKind.checkout, StageKind.publish) and self.steps:
            raise ValueError(f"Stage {self.name!r} of kind {self.kind} takes no steps")
        return self


class PipelineDefinition(BaseModel):
    name: str = "site"
    output_dir: str = "_site"
    destination: str = "~/site"
    stages: list[Stage]

    @model_validator(mode="after")
    def _check_order(self):
        kinds = [stage.kind for stage in self.stages]
        positions = [STAGE_ORDER.index(kind) for kind in kinds]
        if positions != sorted(positions) or len(set(kinds)) != len(kinds):
            raise ValueError(
                "Stages must appear at most once each, in the order "
                + ", ".join(STAGE_ORDER)
            )
        for required in (StageKind.checkout, StageKind.build, StageKind.publish):
            if required not in kinds:
                raise ValueError(f"Pipeline has no {required} stage")
        return self

    def stage(self, kind: StageKind) -> Stage | None:
        for stage in self.stages:
            if stage.kind == kind:
                return stage
        return None

    def destination_path(self) -> Path:
        return Path(self.destination).expanduser()


def default_pipeline(config: Config) -> PipelineDefinition:
    """The blog pipeline: bundle install into the workspace, then jekyll build."""
    return PipelineDefinition(
        name="blog",
        output_dir=config.OUTPUT_DIR,
        destination=config.DESTINATION,
        stages=[
            Stage(name="checkout", kind=StageKind.checkout),
            Stage(
                name="install",
                kind=StageKind.install,
                steps=[
                    Step(
                        name="bundle-path",
                        run="bundle config set --local path vendor/bundle",
                    ),
                    Step(name="bundle-install", run="bundle install"),
                ],
            ),
            Stage(
                name="build",
                kind=StageKind.build,
                steps=[Step(name="jekyll-build", run="bundle exec jekyll build")],
            ),
            Stage(name="publish", kind=StageKind.publish),
        ],
    )


def load_pipeline(path: str | Path, config: Config) -> PipelineDefinition:
    """Load a pipeline from a TOML file, falling back to config for paths."""
    path = Path(path)
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise InvalidPipelineError(f"Cannot read pipeline file {path}: {e}") from e

    data.setdefault("output_dir", config.OUTPUT_DIR)
    data.setdefault("destination", config.DESTINATION)

    try:
        return PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise InvalidPipelineError(f"Invalid pipeline file {path}: {e}") from e


def pipeline_from_config(config: Config) -> PipelineDefinition:
    if config.PIPELINE_FILE:
        return load_pipeline(config.PIPELINE_FILE, config)
    return default_pipeline(config)
