from gidgetlab.abc import GitLabAPI
import gidgetlab
import aiohttp
from sanic.log import logger

from pages_relay import metrics
from pages_relay.config import Config
from pages_relay.models import RunResult, RunStatus

STATUS_NAME = "pages-relay"


def gitlab_state(status: RunStatus) -> str:
    if status == RunStatus.pending:
        return "pending"
    elif status == RunStatus.running:
        return "running"
    elif status == RunStatus.success:
        return "success"
    elif status == RunStatus.failure:
        return "failed"
    raise ValueError(f"Unknown status {status}")


class GitLab:
    def __init__(self, gl: GitLabAPI, config: Config):
        self.gl = gl
        self.config = config

    def get_status_url(self, project_id: int, sha: str) -> str:
        return f"/projects/{project_id}/statuses/{sha}"

    async def post_commit_status(
        self, project_id: int, sha: str, result: RunResult
    ) -> None:
        state = gitlab_state(result.status)
        data = {"state": state, "name": STATUS_NAME}
        if result.failure is not None:
            data["description"] = result.failure

        logger.debug(
            "Posting commit status %s for sha %s to GitLab project %d",
            state,
            sha,
            project_id,
        )
        if self.config.STERILE or self.config.GITLAB_ACCESS_TOKEN is None:
            return

        try:
            await self.gl.post(self.get_status_url(project_id, sha), data=data)
            metrics.status_reports_total.labels("gitlab", state).inc()
        except (gidgetlab.GitLabException, aiohttp.ClientError) as e:
            metrics.status_report_errors_total.labels("gitlab", type(e).__name__).inc()
            logger.error("Posting commit status to GitLab failed: %s", e, exc_info=e)
