import http

import gidgethub
import pytest
from unittest.mock import AsyncMock, MagicMock, create_autospec
from gidgethub import sansio

import pages_relay.github.router as github_router
from pages_relay.github.router import router
import pages_relay.github.utils as github
from pages_relay.github.models import PushEvent, Pusher, Repository, User
from pages_relay.models import (
    NULL_SHA,
    RunResult,
    RunStatus,
    StageResult,
    TriggerEvent,
    TriggerSource,
)


test_repository = Repository(
    id=123,
    url="https://api.github.com/repos/author/blog",
    full_name="author/blog",
    clone_url="https://github.com/author/blog.git",
)

HEAD_SHA = "a" * 40


def make_push(ref="refs/heads/main", after=HEAD_SHA, deleted=False):
    return PushEvent(
        ref=ref,
        before="b" * 40,
        after=after,
        deleted=deleted,
        repository=test_repository,
        pusher=Pusher(name="author"),
        sender=User(login="author"),
    )


def test_trigger_from_push(config):
    trigger = github.trigger_from_push(make_push(), config)

    assert trigger is not None
    assert trigger.source == "github"
    assert trigger.sha == HEAD_SHA
    assert trigger.clone_url == test_repository.clone_url
    assert trigger.repository == "author/blog"


def test_trigger_from_push_clone_url_override(config, monkeypatch):
    monkeypatch.setattr(config, "CLONE_URL", "git@github.com:author/blog.git")
    trigger = github.trigger_from_push(make_push(), config)
    assert trigger.clone_url == "git@github.com:author/blog.git"


def test_trigger_from_push_ignored(config):
    assert github.trigger_from_push(make_push(ref="refs/heads/drafts"), config) is None
    assert github.trigger_from_push(make_push(ref="refs/tags/v1"), config) is None
    assert github.trigger_from_push(make_push(deleted=True), config) is None
    assert github.trigger_from_push(make_push(after=NULL_SHA), config) is None


def make_result(status, failure=None):
    trigger = TriggerEvent(
        source=TriggerSource.github,
        ref="refs/heads/main",
        sha=HEAD_SHA,
        clone_url=test_repository.clone_url,
    )
    result = RunResult(run_id="run", trigger=trigger, status=status, failure=failure)
    if failure is not None:
        result.stages.append(
            StageResult(name="build", kind="build", status=RunStatus.failure)
        )
    return result


def test_make_status_payload():
    assert github.make_status_payload(make_result(RunStatus.running)).state == "pending"

    success = github.make_status_payload(make_result(RunStatus.success))
    assert success.state == "success"
    assert success.context == "pages-relay"

    failure = github.make_status_payload(
        make_result(RunStatus.failure, failure="BuildFailure")
    )
    assert failure.state == "failure"
    assert failure.description == "BuildFailure in stage build"


@pytest.mark.asyncio
async def test_handle_push_runs_pipeline_and_reports(config):
    gh = AsyncMock()
    runner = MagicMock()
    runner.run = AsyncMock(return_value=make_result(RunStatus.success))

    result = await github.handle_push(gh, make_push(), runner=runner, config=config)

    assert result.status == RunStatus.success
    runner.run.assert_called_once()
    trigger = runner.run.call_args.args[0]
    assert trigger.sha == HEAD_SHA

    assert gh.post.call_count == 2
    pending_call, final_call = gh.post.call_args_list
    assert pending_call.args[0] == f"/repos/author/blog/statuses/{HEAD_SHA}"
    assert pending_call.kwargs["data"]["state"] == "pending"
    assert final_call.kwargs["data"]["state"] == "success"


@pytest.mark.asyncio
async def test_handle_push_ignored_branch(config):
    gh = AsyncMock()
    runner = MagicMock()
    runner.run = AsyncMock()

    result = await github.handle_push(
        gh, make_push(ref="refs/heads/drafts"), runner=runner, config=config
    )

    assert result is None
    runner.run.assert_not_called()
    gh.post.assert_not_called()


@pytest.mark.asyncio
async def test_handle_push_sterile(config, monkeypatch):
    monkeypatch.setattr(config, "STERILE", True)
    gh = AsyncMock()
    runner = MagicMock()
    runner.run = AsyncMock(return_value=make_result(RunStatus.success))

    await github.handle_push(gh, make_push(), runner=runner, config=config)

    runner.run.assert_called_once()
    gh.post.assert_not_called()


@pytest.mark.asyncio
async def test_status_report_error_does_not_abort(config):
    gh = AsyncMock()
    gh.post.side_effect = gidgethub.BadRequest(http.HTTPStatus.UNPROCESSABLE_ENTITY)
    runner = MagicMock()
    runner.run = AsyncMock(return_value=make_result(RunStatus.success))

    result = await github.handle_push(gh, make_push(), runner=runner, config=config)

    assert result.status == RunStatus.success
    runner.run.assert_called_once()


@pytest.mark.asyncio
async def test_router_dispatches_push(app, monkeypatch, session):
    event = sansio.Event(
        make_push().model_dump(), event="push", delivery_id="delivery"
    )

    with monkeypatch.context() as m:
        handle_push_mocked = create_autospec(github.handle_push)
        m.setattr(github_router, "handle_push", handle_push_mocked)

        await router.dispatch(event, session=session, gh=AsyncMock(), app=app)

        handle_push_mocked.assert_called_once()
        data = handle_push_mocked.call_args.args[1]
        assert isinstance(data, PushEvent)
        assert handle_push_mocked.call_args.kwargs["runner"] is app.ctx.runner


@pytest.mark.asyncio
async def test_router_ping(app, monkeypatch, session):
    event = sansio.Event({"zen": "Keep it simple"}, event="ping", delivery_id="1")

    with monkeypatch.context() as m:
        handle_push_mocked = create_autospec(github.handle_push)
        m.setattr(github_router, "handle_push", handle_push_mocked)

        await router.dispatch(event, session=session, gh=AsyncMock(), app=app)

        handle_push_mocked.assert_not_called()
