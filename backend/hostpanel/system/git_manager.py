import logging
import os
import re

from hostpanel.core.exceptions import InvalidInput
from hostpanel.system import runner

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 120
BRANCH_RE = re.compile(r"[^a-zA-Z0-9/_.-]")
CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def clean_repo_url(url: str) -> str:
    url = CONTROL_RE.sub("", (url or "").strip())[:2048]
    if not url:
        raise InvalidInput("Repository URL is required")
    if url.startswith("-"):
        raise InvalidInput("Invalid repository URL")
    return url


def clean_branch(branch: str) -> str:
    branch = BRANCH_RE.sub("", (branch or "").strip())
    if branch.startswith("-"):
        raise InvalidInput("Invalid branch name")
    return branch


def is_repo(workdir: str) -> bool:
    return os.path.isdir(os.path.join(workdir, ".git"))


def clone(repo_url: str, target: str, branch: str = ""):
    args = ["git", "clone"]
    if branch:
        args += ["-b", branch]
    args += ["--", repo_url, target]
    runner.run_command(args, timeout=GIT_TIMEOUT, check=True, tool="git clone")
    logger.info("git: cloned %s into %s", repo_url, target)


def set_remote(workdir: str, repo_url: str, branch: str = ""):
    runner.run_command(["git", "remote", "set-url", "origin", repo_url], cwd=workdir, check=True, tool="git")
    runner.run_command(["git", "fetch", "origin"], cwd=workdir, timeout=GIT_TIMEOUT, check=True, tool="git fetch")
    if branch:
        runner.run_command(["git", "checkout", branch], cwd=workdir, check=True, tool="git checkout")
        runner.run_command(
            ["git", "branch", "--set-upstream-to", f"origin/{branch}", branch],
            cwd=workdir, check=True, tool="git",
        )


def current_branch(workdir: str) -> str:
    result = runner.run_command(["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=workdir, check=True, tool="git")
    return result.stdout.strip()


def pull(workdir: str, branch: str = ""):
    runner.run_command(["git", "fetch", "origin"], cwd=workdir, timeout=GIT_TIMEOUT, check=True, tool="git fetch")
    if branch:
        runner.run_command(["git", "checkout", branch], cwd=workdir, check=True, tool="git checkout")
    else:
        branch = current_branch(workdir)
    runner.run_command(["git", "pull", "origin", branch], cwd=workdir, timeout=GIT_TIMEOUT, check=True, tool="git pull")
    logger.info("git: pulled %s in %s", branch, workdir)


def chown_web(path: str) -> bool:
    """Hand the tree to www-data. Best-effort."""
    return runner.try_command(["chown", "-R", "www-data:www-data", path], timeout=GIT_TIMEOUT).ok
