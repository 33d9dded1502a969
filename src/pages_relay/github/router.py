from gidgethub.routing import Router
from sanic.log import logger
from sanic import Sanic
from gidgethub.abc import GitHubAPI
from gidgethub.sansio import Event
import aiohttp

from pages_relay import metrics
from pages_relay.github.utils import handle_push
from pages_relay.github.models import PushEvent

router = Router()


@router.register("push")
async def on_push(
    event: Event,
    session: aiohttp.ClientSession,
    gh: GitHubAPI,
    app: Sanic,
):
    logger.debug("Received push event")
    metrics.webhooks_received_total.labels("github", "push").inc()
    data = PushEvent.model_validate(event.data)
    await handle_push(gh, data, runner=app.ctx.runner, config=app.ctx.config)


@router.register("ping")
async def on_ping(event: Event, session: aiohttp.ClientSession, gh: GitHubAPI, app: Sanic):
    logger.debug("Received ping event")
    metrics.webhooks_received_total.labels("github", "ping").inc()
