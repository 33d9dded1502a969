from gidgetlab.routing import Router
from gidgetlab.sansio import Event
from sanic import Sanic
from sanic.log import logger
import gidgetlab.aiohttp
import aiohttp

from pages_relay import metrics
from pages_relay.config import Config
from pages_relay.gitlab import GitLab
from pages_relay.gitlab.models import PushHookEvent
from pages_relay.models import NULL_SHA, RunResult, TriggerEvent, TriggerSource
from pages_relay.runner import PipelineRunner


def trigger_from_push(event: PushHookEvent, config: Config) -> TriggerEvent | None:
    if event.ref != f"refs/heads/{config.WATCHED_BRANCH}":
        logger.debug(
            "Ignoring push to %s, watching %s", event.ref, config.WATCHED_BRANCH
        )
        metrics.webhooks_ignored_total.labels("gitlab", "branch").inc()
        return None

    if event.checkout_sha is None or event.after == NULL_SHA:
        logger.debug("Ignoring deletion of %s", event.ref)
        metrics.webhooks_ignored_total.labels("gitlab", "deleted").inc()
        return None

    return TriggerEvent(
        source=TriggerSource.gitlab,
        ref=event.ref,
        sha=event.checkout_sha,
        clone_url=config.CLONE_URL or event.project.git_http_url,
        repository=event.project.path_with_namespace,
    )


async def on_push_hook(
    event: Event, gitlab_client: GitLab, runner: PipelineRunner, config: Config
) -> RunResult | None:
    logger.debug("On push hook")
    data = PushHookEvent.model_validate(event.data)

    trigger = trigger_from_push(data, config)
    if trigger is None:
        return None

    logger.info(
        "Push to %s by %s on %s",
        data.ref,
        data.user_username,
        data.project.path_with_namespace,
    )

    pending = RunResult(run_id="", trigger=trigger)
    await gitlab_client.post_commit_status(data.project_id, trigger.sha, pending)

    result = await runner.run(trigger)

    await gitlab_client.post_commit_status(data.project_id, trigger.sha, result)
    return result


router = Router()


@router.register("Push Hook")
async def _on_push_hook(
    event: Event,
    session: aiohttp.ClientSession,
    gl: gidgetlab.aiohttp.GitLabAPI,
    app: Sanic,
):
    metrics.webhooks_received_total.labels("gitlab", "Push Hook").inc()
    gitlab_client = GitLab(gl=gl, config=app.ctx.config)
    await on_push_hook(
        event, gitlab_client=gitlab_client, runner=app.ctx.runner, config=app.ctx.config
    )
