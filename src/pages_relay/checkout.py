from pathlib import Path

from git import (
    Repo,
    GitCommandError,
    InvalidGitRepositoryError,
    NoSuchPathError,
)
from sanic.log import logger

from pages_relay.exceptions import CheckoutFailure

# kept between runs so installed gems survive a clean checkout
PRESERVED_PATHS = ["/vendor/", "/.bundle/"]


def checkout(clone_url: str, branch: str, workspace: Path) -> str:
    """
    Bring ``workspace`` to the head of ``branch`` and return the head commit.

    An existing clone is fetched, hard reset and cleaned of untracked files so
    that every run starts from the same tree. Otherwise the branch is cloned.
    """
    repo: Repo | None = None
    try:
        if (workspace / ".git").exists():
            repo = Repo(workspace)
            origin = repo.remotes.origin
            if origin.url != clone_url:
                logger.debug("Updating origin url to %s", clone_url)
                origin.set_url(clone_url)
            logger.debug("Fetching %s from %s", branch, clone_url)
            origin.fetch(f"+refs/heads/{branch}:refs/remotes/origin/{branch}")
            repo.git.checkout("-B", branch, f"origin/{branch}")
            repo.git.reset("--hard", f"origin/{branch}")
            excludes = []
            for path in PRESERVED_PATHS:
                excludes += ["-e", path]
            repo.git.clean("-ffdx", *excludes)
        else:
            workspace.parent.mkdir(parents=True, exist_ok=True)
            logger.debug("Cloning %s (branch %s) into %s", clone_url, branch, workspace)
            repo = Repo.clone_from(clone_url, workspace, branch=branch)
        return repo.head.commit.hexsha
    except (GitCommandError, InvalidGitRepositoryError, NoSuchPathError, OSError) as e:
        raise CheckoutFailure(
            f"Checkout of {branch} from {clone_url} failed",
            stage="checkout",
            output=str(e),
        ) from e
    finally:
        if repo is not None:
            repo.close()
