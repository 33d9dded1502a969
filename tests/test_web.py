import asyncio
from unittest.mock import AsyncMock, MagicMock, create_autospec

import pytest
from gidgethub.sansio import Event as GitHubEvent
from gidgetlab.sansio import Event as GitLabEvent
from sanic import Sanic

import pages_relay.web as web
import pages_relay.github.router as github_router
import pages_relay.gitlab.router as gitlab_router
from pages_relay.models import RunResult, RunStatus, TriggerEvent, TriggerSource
from pages_relay.runner import PipelineRunner


def test_create_app(app, config):
    assert isinstance(app.ctx.runner, PipelineRunner)
    assert app.ctx.config is config
    assert app.ctx.runner.history is app.ctx.runs
    assert app.ctx.pipeline.name == "blog"
    assert app.config.WATCHED_BRANCH == "main"


@pytest.mark.asyncio
async def test_handle_github_webhook(app, monkeypatch):
    payload = {"ref": "refs/heads/main", "after": "a" * 40}

    request = MagicMock()
    request.headers = {"X-GitHub-Event": "push"}
    request.body = str(payload).encode()

    event = GitHubEvent(payload, event="push", delivery_id="test")
    monkeypatch.setattr(GitHubEvent, "from_http", MagicMock(return_value=event))

    dispatch_mock = create_autospec(github_router.router.dispatch)
    monkeypatch.setattr("pages_relay.github.router.router.dispatch", dispatch_mock)

    await web.handle_github_webhook(request, app=app)

    call_args = dispatch_mock.call_args
    assert call_args[0][0] is event
    assert call_args[1]["app"] == app
    assert call_args[1]["gh"] is not None


@pytest.mark.asyncio
async def test_handle_gitlab_webhook(app, monkeypatch):
    payload = {"object_kind": "push", "ref": "refs/heads/main"}

    request = MagicMock()
    request.headers = {"X-Gitlab-Event": "Push Hook", "X-Gitlab-Token": "secret"}
    request.body = str(payload).encode()

    event = GitLabEvent(payload, event="Push Hook")
    monkeypatch.setattr(GitLabEvent, "from_http", MagicMock(return_value=event))

    mock_gitlab_client = AsyncMock()
    monkeypatch.setattr(
        "gidgetlab.aiohttp.GitLabAPI", MagicMock(return_value=mock_gitlab_client)
    )

    dispatch_mock = create_autospec(gitlab_router.router.dispatch)
    monkeypatch.setattr("pages_relay.gitlab.router.router.dispatch", dispatch_mock)

    await web.handle_gitlab_webhook(request, app=app)

    call_args = dispatch_mock.call_args
    assert call_args[0][0] is event
    assert call_args[1]["app"] == app
    assert call_args[1]["gl"] == mock_gitlab_client


@pytest.mark.asyncio
async def test_webhook_endpoints(app: Sanic, monkeypatch):
    tasks = []

    def add_task(app: Sanic, task):
        tasks.append(task)

    monkeypatch.setattr("pages_relay.web.add_task", add_task)

    payload = {"ref": "refs/heads/main"}
    event = GitHubEvent(payload, event="push", delivery_id="test")
    monkeypatch.setattr(GitHubEvent, "from_http", MagicMock(return_value=event))

    with monkeypatch.context() as m:
        dispatch_mock = create_autospec(github_router.router.dispatch)
        m.setattr("pages_relay.github.router.router.dispatch", dispatch_mock)

        _, response = await app.asgi_client.post(
            "/webhook/github", json=payload, headers={"X-GitHub-Event": "push"}
        )
        assert response.status_code == 200
        await asyncio.gather(*tasks)

        dispatch_mock.assert_called_once()

    tasks = []

    with monkeypatch.context() as m:
        dispatch_mock = create_autospec(gitlab_router.router.dispatch)
        m.setattr("pages_relay.gitlab.router.router.dispatch", dispatch_mock)

        _, response = await app.asgi_client.post(
            "/webhook/gitlab",
            json={"object_kind": "push", "ref": "refs/heads/main"},
            headers={"X-Gitlab-Event": "Push Hook"},
        )
        assert response.status_code == 200
        await asyncio.gather(*tasks)

        dispatch_mock.assert_called_once()

    tasks = []

    with monkeypatch.context() as m:
        handle_github_webhook_mock = AsyncMock()
        m.setattr("pages_relay.web.handle_github_webhook", handle_github_webhook_mock)
        handle_gitlab_webhook_mock = AsyncMock()
        m.setattr("pages_relay.web.handle_gitlab_webhook", handle_gitlab_webhook_mock)

        _, response = await app.asgi_client.post(
            "/webhook",
            json={"object_kind": "push"},
            headers={"X-Gitlab-Event": "Push Hook"},
        )
        assert response.status_code == 200
        await asyncio.gather(*tasks)
        handle_gitlab_webhook_mock.assert_called_once()

        tasks = []

        _, response = await app.asgi_client.post(
            "/webhook", json=payload, headers={"X-GitHub-Event": "push"}
        )
        assert response.status_code == 200
        await asyncio.gather(*tasks)
        handle_github_webhook_mock.assert_called_once()

        tasks = []

        _, response = await app.asgi_client.post("/webhook", json=payload)
        assert response.status_code == 200
        assert tasks == []


@pytest.mark.asyncio
async def test_failing_handler_is_logged(monkeypatch):
    logger = MagicMock()
    monkeypatch.setattr(web, "logger", logger)

    async def boom():
        raise RuntimeError("bad payload")

    await web._logged(boom(), "github")

    logger.exception.assert_called_once()


def test_index(app):
    _, response = app.test_client.get("/")
    assert response.status_code == 200
    assert response.text == "ok"


def test_health_check(app):
    _, response = app.test_client.get("/health")
    assert response.status_code == 200
    assert response.text == "Workspace: ok, Destination: ok, Environment: ok"


def test_health_check_missing_engine(app, monkeypatch):
    from pages_relay.environment import ContainerEnvironment, EnvironmentDescriptor

    app.ctx.environment = ContainerEnvironment(
        ["sh", "-c"],
        EnvironmentDescriptor.from_config(app.ctx.config),
        engine="definitely-not-a-container-engine",
    )

    _, response = app.test_client.get("/health")
    assert response.status_code == 500
    assert "Environment: not ok" in response.text


def test_runs_endpoints(app):
    trigger = TriggerEvent(
        source=TriggerSource.github,
        ref="refs/heads/main",
        sha="a" * 40,
        clone_url="https://github.com/author/blog.git",
    )
    app.ctx.runs["abc"] = RunResult(
        run_id="abc", trigger=trigger, status=RunStatus.failure, failure="BuildFailure"
    )

    _, response = app.test_client.get("/runs/abc")
    assert response.status_code == 200
    assert response.json["status"] == "failure"
    assert response.json["failure"] == "BuildFailure"
    assert response.json["trigger"]["sha"] == "a" * 40

    _, response = app.test_client.get("/runs")
    assert response.status_code == 200
    assert [run["run_id"] for run in response.json] == ["abc"]

    _, response = app.test_client.get("/runs/missing")
    assert response.status_code == 404


def test_metrics_endpoint(app):
    _, response = app.test_client.get("/metrics")
    assert response.status_code == 200
    assert "pages_relay_pipeline_runs_total" in response.text
