"""Git working copy operations for one upgrade target."""

import re
from pathlib import Path
from typing import Iterable, List, Sequence, Union
from urllib.parse import urlparse

from wrapperupgrade.errors import CommandError, WrapperUpgradeError
from wrapperupgrade.errors_catalog import actionable_error

_SCP_LIKE = re.compile(r"^[\w.-]+@[\w.-]+:.+$")
_URL_SCHEMES = {"http", "https", "ssh", "git", "file"}


def is_repository_url(location: str) -> bool:
    if _SCP_LIKE.match(location):
        return True
    return urlparse(location).scheme.lower() in _URL_SCHEMES


class GitWorkspaceService:
    """Clones, inspects and publishes a shallow working copy."""

    def __init__(self, command_runner, logger, clone_base_url: str = "https://github.com/"):
        self.command_runner = command_runner
        self.logger = logger
        self.clone_base_url = clone_base_url.rstrip("/") + "/"

    def resolve_repository_url(self, repo: str) -> str:
        if is_repository_url(repo):
            return repo
        return f"{self.clone_base_url}{repo.strip('/')}.git"

    def git(self, cwd: Union[str, Path], *args: str, check: bool = True):
        return self.command_runner.run(["git", *args], cwd=cwd, check=check)

    def clone(
        self,
        repo: str,
        base_branch: str,
        dest_dir: Path,
        unsigned_commits: bool = False,
    ):
        url = self.resolve_repository_url(repo)
        dest_dir = Path(dest_dir)
        dest_dir.parent.mkdir(parents=True, exist_ok=True)
        self.logger.info("Cloning %s (branch %s) into %s", url, base_branch, dest_dir)
        try:
            self.git(
                dest_dir.parent,
                "clone",
                "--quiet",
                "--depth",
                "1",
                "-b",
                base_branch,
                url,
                str(dest_dir),
            )
        except CommandError as exc:
            raise WrapperUpgradeError(
                f"{actionable_error('clone_failed', repo=repo, branch=base_branch)}\n{exc}"
            ) from exc

        if unsigned_commits:
            self.git(dest_dir, "config", "--local", "commit.gpgsign", "false")

    def has_uncommitted_changes(self, checkout_dir: Path) -> bool:
        """Whether tracked files differ from the checked out commit.

        ``git diff --exit-code`` exits with 1 when there is a diff. Any other
        non-zero code is a real failure and is raised as is.
        """
        try:
            self.git(checkout_dir, "diff", "--quiet", "--exit-code")
        except CommandError as exc:
            if exc.returncode == 1:
                return True
            raise
        return False

    def commit_and_push(
        self,
        checkout_dir: Path,
        files: Iterable[Path],
        branch: str,
        message: str,
        extra_commit_args: Sequence[str] = (),
        dry_run: bool = False,
    ):
        for file_path in files:
            self.git(checkout_dir, "add", str(file_path))

        self.git(checkout_dir, "checkout", "--quiet", "-b", branch)

        commit_args: List[str] = ["commit", "--quiet", "--signoff", "-m", message]
        commit_args.extend(extra_commit_args)
        self.git(checkout_dir, *commit_args)

        if dry_run:
            self.logger.info("Dry run: Skipping push of branch '%s'", branch)
            return

        self.git(checkout_dir, "push", "--quiet", "-u", "origin", branch)
