from gidgethub.abc import GitHubAPI
import gidgethub
import aiohttp
from sanic.log import logger

from pages_relay import metrics
from pages_relay.config import Config
from pages_relay.github.models import PushEvent, CommitStatusPayload
from pages_relay.models import (
    NULL_SHA,
    RunResult,
    RunStatus,
    TriggerEvent,
    TriggerSource,
)
from pages_relay.runner import PipelineRunner

STATUS_CONTEXT = "pages-relay"


def trigger_from_push(event: PushEvent, config: Config) -> TriggerEvent | None:
    """Turn a push into a trigger, or None if the push should not start a run."""
    if event.ref != f"refs/heads/{config.WATCHED_BRANCH}":
        logger.debug(
            "Ignoring push to %s, watching %s", event.ref, config.WATCHED_BRANCH
        )
        metrics.webhooks_ignored_total.labels("github", "branch").inc()
        return None

    if event.deleted or event.after == NULL_SHA:
        logger.debug("Ignoring deletion of %s", event.ref)
        metrics.webhooks_ignored_total.labels("github", "deleted").inc()
        return None

    return TriggerEvent(
        source=TriggerSource.github,
        ref=event.ref,
        sha=event.after,
        clone_url=config.CLONE_URL or event.repository.clone_url,
        repository=event.repository.full_name,
    )


def make_status_payload(result: RunResult) -> CommitStatusPayload:
    if result.status in (RunStatus.pending, RunStatus.running):
        state = "pending"
        description = "Site build in progress"
    elif result.status == RunStatus.success:
        state = "success"
        description = "Site built and published"
    else:
        state = "failure"
        stage = result.failed_stage
        where = f" in stage {stage.name}" if stage is not None else ""
        description = f"{result.failure}{where}"

    # GitHub rejects descriptions over 140 characters
    return CommitStatusPayload(
        state=state, description=description[:140], context=STATUS_CONTEXT
    )


async def add_commit_status(
    gh: GitHubAPI, repo_name: str, sha: str, result: RunResult, config: Config
):
    payload = make_status_payload(result)

    logger.debug(
        "Posting commit status %s for sha %s to GitHub repo %s",
        payload.state,
        sha,
        repo_name,
    )
    if config.STERILE or config.GITHUB_TOKEN is None:
        return

    try:
        await gh.post(
            f"/repos/{repo_name}/statuses/{sha}",
            data=payload.model_dump(exclude_none=True),
        )
        metrics.status_reports_total.labels("github", payload.state).inc()
    except (gidgethub.GitHubException, aiohttp.ClientError) as e:
        metrics.status_report_errors_total.labels("github", type(e).__name__).inc()
        logger.error("Posting commit status to GitHub failed: %s", e, exc_info=e)


async def handle_push(
    gh: GitHubAPI,
    event: PushEvent,
    runner: PipelineRunner,
    config: Config,
) -> RunResult | None:
    trigger = trigger_from_push(event, config)
    if trigger is None:
        return None

    logger.info(
        "Push to %s by %s on %s",
        event.ref,
        event.pusher.name,
        event.repository.full_name,
    )

    repo_name = event.repository.full_name
    pending = RunResult(run_id="", trigger=trigger)
    await add_commit_status(gh, repo_name, event.after, pending, config)

    result = await runner.run(trigger)

    await add_commit_status(gh, repo_name, event.after, result, config)
    return result
