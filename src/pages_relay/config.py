from typing import Literal

from pydantic_settings import BaseSettings
from sanic.log import logger


class Config(BaseSettings):
    WEBHOOK_SECRET: str | None = None
    GITLAB_WEBHOOK_SECRET: str | None = None

    WATCHED_BRANCH: str = "main"
    CLONE_URL: str | None = None

    WORKSPACE_ROOT: str = "/var/lib/pages-relay/workspace"
    DESTINATION: str = "~/site"
    OUTPUT_DIR: str = "_site"
    PIPELINE_FILE: str | None = None

    PUBLISH_MODE: Literal["swap", "overlay"] = "swap"

    ENVIRONMENT_MODE: Literal["container", "shim", "host"] = "container"
    CONTAINER_ENGINE: str = "podman"
    IMAGE_NAME: str = "localhost/pages-relay-env"
    SHIM_COMMAND: list[str] = ["nix", "develop", "--command"]
    SHELL_COMMAND: list[str] = ["bash", "-l", "-c"]
    STEP_TIMEOUT: float | None = None

    BASE_IMAGE: str = "docker.io/library/ruby"
    BASE_TAG: str = "3.3-bookworm"
    SYSTEM_PACKAGES: list[str] = ["git", "graphviz", "default-jre-headless", "curl"]
    RENDERER_VERSION: str = "1.2024.7"
    RENDERER_URL_TEMPLATE: str = (
        "https://github.com/plantuml/plantuml/releases/download/"
        "v{version}/plantuml-{version}.jar"
    )
    BOOTSTRAP_COMMAND: str = "gem install bundler"

    GITHUB_TOKEN: str | None = None
    GITLAB_ACCESS_TOKEN: str | None = None
    GITLAB_API_URL: str = "https://gitlab.com/api/v4"

    RUN_HISTORY_SIZE: int = 50

    OVERRIDE_LOGGING: Literal[
        "CRITICAL",
        "FATAL",
        "ERROR",
        "WARNING",
        "WARN",
        "INFO",
        "DEBUG",
        "NOTSET",
    ] = "INFO"

    STERILE: bool = False

    def print_config(self):
        """Print configuration values with sensitive attributes masked"""
        sensitive_attrs = {
            "WEBHOOK_SECRET",
            "GITLAB_WEBHOOK_SECRET",
            "GITHUB_TOKEN",
            "GITLAB_ACCESS_TOKEN",
        }

        logger.info("=== Pages Relay Configuration ===")
        for field_name, field_value in self.model_dump().items():
            if field_name in sensitive_attrs and field_value is not None:
                logger.info(f"{field_name}: ***")
            else:
                logger.info(f"{field_name}: {field_value}")
        logger.info("=================================")
