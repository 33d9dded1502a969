"""
Execution environments for pipeline steps.

The container environment is described by an ``EnvironmentDescriptor``. Its
digest names the image, so an image is only built the first time a given
descriptor is seen; unchanged descriptors reuse the existing image.
"""

import hashlib
import json
import tempfile
from collections.abc import MutableMapping
from pathlib import Path

import cachetools
from pydantic import BaseModel
from sanic.log import logger

from pages_relay import metrics
from pages_relay.config import Config
from pages_relay.exceptions import EnvironmentBuildFailure
from pages_relay.utils import run_command

RENDERER_PATH = "/usr/local/share/plantuml/plantuml.jar"


class EnvironmentDescriptor(BaseModel):
    base_image: str
    base_tag: str
    packages: list[str] = []
    renderer_version: str
    renderer_url_template: str
    bootstrap: str = ""

    @classmethod
    def from_config(cls, config: Config) -> "EnvironmentDescriptor":
        return cls(
            base_image=config.BASE_IMAGE,
            base_tag=config.BASE_TAG,
            packages=config.SYSTEM_PACKAGES,
            renderer_version=config.RENDERER_VERSION,
            renderer_url_template=config.RENDERER_URL_TEMPLATE,
            bootstrap=config.BOOTSTRAP_COMMAND,
        )

    @property
    def renderer_url(self) -> str:
        return self.renderer_url_template.format(version=self.renderer_version)

    def digest(self) -> str:
        canonical = json.dumps(
            self.model_dump(), sort_keys=True, separators=(",", ":")
        ).encode()
        return hashlib.sha256(canonical).hexdigest()

    def image_tag(self, name: str) -> str:
        return f"{name}:{self.digest()[:16]}"

    def render_containerfile(self) -> str:
        lines = [f"FROM {self.base_image}:{self.base_tag}"]
        if self.packages:
            lines.append(
                "RUN apt-get update"
                " && apt-get install -y --no-install-recommends "
                + " ".join(self.packages)
                + " && rm -rf /var/lib/apt/lists/*"
            )
        lines.append(
            f"RUN mkdir -p {Path(RENDERER_PATH).parent}"
            f" && curl -fsSL -o {RENDERER_PATH} {self.renderer_url}"
            " && printf '#!/bin/sh\\nexec java -jar "
            f"{RENDERER_PATH} \"$@\"\\n' > /usr/local/bin/plantuml"
            " && chmod +x /usr/local/bin/plantuml"
        )
        if self.bootstrap:
            lines.append(f"RUN {self.bootstrap}")
        lines.append(f"LABEL io.pages-relay.descriptor={self.digest()}")
        lines.append("WORKDIR /workspace")
        return "\n".join(lines) + "\n"


class Environment:
    """Runs steps directly on the host through the configured shell."""

    def __init__(self, shell: list[str]):
        self.shell = shell

    async def ensure(self) -> str | None:
        return None

    def wrap(self, command: str, workspace: Path) -> list[str]:
        return [*self.shell, command]


class ShimEnvironment(Environment):
    """Runs steps through a provisioning shim such as ``nix develop --command``."""

    def __init__(self, shell: list[str], shim: list[str]):
        super().__init__(shell)
        self.shim = shim

    def wrap(self, command: str, workspace: Path) -> list[str]:
        return [*self.shim, *self.shell, command]


class ContainerEnvironment(Environment):
    def __init__(
        self,
        shell: list[str],
        descriptor: EnvironmentDescriptor,
        engine: str = "podman",
        image_name: str = "localhost/pages-relay-env",
        cache: MutableMapping | None = None,
    ):
        super().__init__(shell)
        self.descriptor = descriptor
        self.engine = engine
        self.image_name = image_name
        self.cache = cache if cache is not None else cachetools.LRUCache(maxsize=16)

    @property
    def tag(self) -> str:
        return self.descriptor.image_tag(self.image_name)

    async def image_exists(self) -> bool:
        code, _ = await run_command([self.engine, "image", "inspect", self.tag])
        return code == 0

    async def ensure(self) -> str:
        """Make sure the image for the current descriptor exists, building it if not."""
        tag = self.tag
        if tag in self.cache:
            logger.debug("Environment image %s known from cache", tag)
            return tag

        if await self.image_exists():
            logger.debug("Environment image %s already present", tag)
            self.cache[tag] = True
            metrics.environment_builds_total.labels("reused").inc()
            return tag

        logger.info("Building environment image %s", tag)
        containerfile = self.descriptor.render_containerfile()
        with tempfile.TemporaryDirectory(prefix="pages-relay-env-") as context:
            code, output = await run_command(
                [self.engine, "build", "-t", tag, "-f", "-", context],
                stdin=containerfile.encode(),
            )

        if code != 0:
            metrics.environment_builds_total.labels("failed").inc()
            raise EnvironmentBuildFailure(
                f"Building environment image {tag} exited with status {code}",
                stage="environment",
                output=output,
            )

        metrics.environment_builds_total.labels("built").inc()
        self.cache[tag] = True
        return tag

    def wrap(self, command: str, workspace: Path) -> list[str]:
        return [
            self.engine,
            "run",
            "--rm",
            "-v",
            f"{workspace}:/workspace",
            "-w",
            "/workspace",
            self.tag,
            *self.shell,
            command,
        ]


def environment_from_config(
    config: Config, cache: MutableMapping | None = None
) -> Environment:
    if config.ENVIRONMENT_MODE == "container":
        return ContainerEnvironment(
            config.SHELL_COMMAND,
            EnvironmentDescriptor.from_config(config),
            engine=config.CONTAINER_ENGINE,
            image_name=config.IMAGE_NAME,
            cache=cache,
        )
    if config.ENVIRONMENT_MODE == "shim":
        return ShimEnvironment(config.SHELL_COMMAND, config.SHIM_COMMAND)
    return Environment(config.SHELL_COMMAND)
