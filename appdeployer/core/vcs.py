"""Keep the app sources up to date before building."""

import logging
from pathlib import Path

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from appdeployer.core.errors import SourceUpdateError

logger = logging.getLogger(__name__)


def pull_latest(app_dir: Path) -> bool:
    """Pull the current branch from origin when the app lives in a git repository.

    Args:
        app_dir: Application directory, may be anywhere inside the work tree

    Returns:
        True if a pull was made, False if there was nothing to pull from

    Raises:
        SourceUpdateError: If git pull fails
    """
    try:
        repo = Repo(app_dir, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        logger.info("%s is not a git repository, skipping pull", app_dir)
        return False

    with repo:
        if "origin" not in [remote.name for remote in repo.remotes]:
            logger.info("%s has no origin remote, skipping pull", repo.working_dir)
            return False
        if repo.head.is_detached:
            logger.info("%s is on a detached HEAD, skipping pull", repo.working_dir)
            return False

        branch = repo.active_branch.name
        logger.info("Pulling %s from origin in %s", branch, repo.working_dir)
        try:
            repo.remotes.origin.pull(branch)
        except GitCommandError as e:
            raise SourceUpdateError(f"git pull failed in {repo.working_dir}: {e.stderr.strip() or e}") from e

    return True
