import contextlib
import functools
import os
import shutil
from pathlib import Path

from sanic import Sanic, response
import aiohttp
from gidgethub.sansio import Event as GitHubEvent
from gidgetlab.sansio import Event as GitLabEvent
from gidgethub import aiohttp as gh_aiohttp
import gidgetlab.aiohttp
from sanic.log import logger
import cachetools
from aiolimiter import AsyncLimiter
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from pages_relay import metrics
from pages_relay.config import Config
from pages_relay.environment import ContainerEnvironment, environment_from_config
from pages_relay.github.router import router as github_router
from pages_relay.gitlab.router import router as gitlab_router
from pages_relay.pipeline import pipeline_from_config
from pages_relay.runner import PipelineRunner

REQUESTER = "pages-relay"


def with_session(func):
    @functools.wraps(func)
    async def wrapper(
        *args, app: Sanic, session: aiohttp.ClientSession | None = None, **kwargs
    ):
        async with contextlib.AsyncExitStack() as stack:
            if session is None:
                session = await stack.enter_async_context(aiohttp.ClientSession())
            return await func(*args, app=app, session=session, **kwargs)

    return wrapper


@with_session
async def handle_gitlab_webhook(request, *, app: Sanic, session: aiohttp.ClientSession):
    config: Config = app.ctx.config
    event = GitLabEvent.from_http(
        request.headers, request.body, secret=config.GITLAB_WEBHOOK_SECRET
    )

    gl = gidgetlab.aiohttp.GitLabAPI(
        session,
        requester=REQUESTER,
        access_token=config.GITLAB_ACCESS_TOKEN,
        url=config.GITLAB_API_URL,
    )

    logger.debug("Dispatching event %s", event.event)
    await gitlab_router.dispatch(event, session=session, app=app, gl=gl)


@with_session
async def handle_github_webhook(request, *, app: Sanic, session: aiohttp.ClientSession):
    config: Config = app.ctx.config
    event = GitHubEvent.from_http(
        request.headers, request.body, secret=config.WEBHOOK_SECRET
    )

    gh = gh_aiohttp.GitHubAPI(session, REQUESTER, oauth_token=config.GITHUB_TOKEN)

    logger.debug("Dispatching event %s", event.event)
    await github_router.dispatch(event, session=session, gh=gh, app=app)


async def _logged(coro, source: str):
    try:
        await coro
    except Exception as e:
        logger.error("Handling %s webhook failed: %s", source, e)
        logger.exception(e)


def add_task(app: Sanic, task):
    app.add_task(task)


def check_writable(path: Path) -> bool:
    """True if ``path`` or its closest existing ancestor is a writable directory."""
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate.is_dir() and os.access(candidate, os.W_OK)
    return False


def create_app(config: Config | None = None):
    if config is None:
        config = Config()

    app = Sanic("pages-relay")
    app.update_config(config)
    logger.setLevel(config.OVERRIDE_LOGGING)

    app.ctx.config = config
    app.ctx.runs = cachetools.LRUCache(maxsize=config.RUN_HISTORY_SIZE)
    app.ctx.environment = environment_from_config(config)
    app.ctx.pipeline = pipeline_from_config(config)
    app.ctx.runner = PipelineRunner(
        config,
        app.ctx.pipeline,
        app.ctx.environment,
        history=app.ctx.runs,
    )

    metrics.app_info.info(
        {
            "pipeline": app.ctx.pipeline.name,
            "environment_mode": config.ENVIRONMENT_MODE,
            "publish_mode": config.PUBLISH_MODE,
        }
    )

    limiter = AsyncLimiter(10)

    @app.listener("before_server_start")
    async def init(app, loop):
        config.print_config()

    @app.route("/")
    async def index(request):
        logger.debug("status check")
        return response.text("ok")

    @app.route("/health")
    async def health(request):
        if not limiter.has_capacity():
            return response.text("Rate limited", status=429)
        await limiter.acquire()

        logger.info("Checking health")
        workspace_ok = check_writable(Path(config.WORKSPACE_ROOT).expanduser())
        destination_ok = check_writable(app.ctx.pipeline.destination_path().parent)

        environment_ok = True
        if isinstance(app.ctx.environment, ContainerEnvironment):
            environment_ok = shutil.which(app.ctx.environment.engine) is not None
            if not environment_ok:
                logger.error(
                    "Container engine %s not found", app.ctx.environment.engine
                )

        for service, ok in (
            ("workspace", workspace_ok),
            ("destination", destination_ok),
            ("environment", environment_ok),
        ):
            metrics.health_check_status.labels(service).set(1 if ok else 0)

        status = 200 if workspace_ok and destination_ok and environment_ok else 500

        def fmt(ok):
            return "ok" if ok else "not ok"

        text = (
            f"Workspace: {fmt(workspace_ok)}, "
            f"Destination: {fmt(destination_ok)}, "
            f"Environment: {fmt(environment_ok)}"
        )
        return response.text(text, status=status)

    @app.route("/metrics")
    async def prometheus(request):
        return response.raw(
            generate_latest(), content_type=CONTENT_TYPE_LATEST
        )

    @app.route("/runs")
    async def runs(request):
        results = sorted(
            app.ctx.runs.values(), key=lambda r: r.started_at, reverse=True
        )
        return response.json([r.model_dump(mode="json") for r in results])

    @app.route("/runs/<run_id:str>")
    async def run(request, run_id: str):
        result = app.ctx.runs.get(run_id)
        if result is None:
            return response.json({"error": "Unknown run"}, status=404)
        return response.json(result.model_dump(mode="json"))

    @app.route("/webhook/github", methods=["POST"])
    async def github(request):
        logger.debug("Webhook received on github endpoint")

        add_task(app, _logged(handle_github_webhook(request, app=app), "github"))

        return response.empty(200)

    @app.route("/webhook/gitlab", methods=["POST"])
    async def gitlab(request):
        logger.debug("Webhook received on gitlab endpoint")

        add_task(app, _logged(handle_gitlab_webhook(request, app=app), "gitlab"))

        return response.empty(200)

    @app.route("/webhook", methods=["POST"])
    async def webhook(request):
        logger.debug("Webhook received on compatibility endpoint")

        if "X-Gitlab-Event" in request.headers:
            add_task(app, _logged(handle_gitlab_webhook(request, app=app), "gitlab"))
        elif "X-GitHub-Event" in request.headers:
            add_task(app, _logged(handle_github_webhook(request, app=app), "github"))
        else:
            logger.debug("Webhook without a known event header ignored")

        return response.empty(200)

    return app
