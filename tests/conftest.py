import pytest
import aiohttp
from sanic import Sanic
import pytest_asyncio
from sanic_testing import TestManager
from sanic.log import logger

from pages_relay.config import Config


@pytest.fixture
def config(tmp_path):
    config = Config(
        WEBHOOK_SECRET=None,
        GITLAB_WEBHOOK_SECRET=None,
        WATCHED_BRANCH="main",
        WORKSPACE_ROOT=str(tmp_path / "workspace"),
        DESTINATION=str(tmp_path / "www" / "site"),
        OUTPUT_DIR="_site",
        PUBLISH_MODE="swap",
        ENVIRONMENT_MODE="host",
        SHELL_COMMAND=["sh", "-c"],
        GITHUB_TOKEN="abc",
        GITLAB_ACCESS_TOKEN="abc",
        GITLAB_API_URL="https://gitlab.example.com/api/v4",
        OVERRIDE_LOGGING="DEBUG",
        STERILE=False,
    )

    logger.setLevel(config.OVERRIDE_LOGGING)

    return config


@pytest.fixture(scope="function")
def app(monkeypatch, config) -> Sanic:
    """Create a Sanic app for testing."""
    from pages_relay.web import create_app

    Sanic.test_mode = True
    app = create_app(config=config)
    TestManager(app)
    return app


@pytest_asyncio.fixture
async def session():
    async with aiohttp.ClientSession() as session:
        yield session
