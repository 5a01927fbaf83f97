"""Shared domain models for wrapperupgrade."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

OUTCOME_BRANCH_EXISTS = "branch_exists"
OUTCOME_CLOSED_PR_EXISTS = "closed_pr_exists"
OUTCOME_NO_CHANGES = "no_changes"
OUTCOME_PUBLISHED = "published"
OUTCOME_DRY_RUN = "dry_run"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class UpgradeOptions:
    allow_pre_release: bool = False
    recreate_closed_pull_request: bool = False
    git_commit_extra_args: Tuple[str, ...] = ()
    labels: Tuple[str, ...] = ()
    reviewers: Tuple[str, ...] = ()
    assignees: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UpgradeTarget:
    """One configured (repository, base branch, sub-directory) unit."""

    name: str
    repo: str
    base_branch: str = "main"
    dir: str = "."
    build_tool: str = "gradle"
    options: UpgradeOptions = field(default_factory=UpgradeOptions)


@dataclass(frozen=True)
class RunSettings:
    """Process-wide settings, evaluated once and passed down explicitly."""

    dry_run: bool = False
    unsigned_commits: bool = False
    github_token: Optional[str] = None
    api_url: str = "https://api.github.com"
    clone_base_url: str = "https://github.com/"
    work_dir: str = "build"
    command_timeout: Optional[float] = None
    request_timeout: float = 30.0


@dataclass(frozen=True)
class VersionInfo:
    version: str


@dataclass(frozen=True)
class WorkspaceHandle:
    checkout_dir: Path
    root_project_dir: Path
    root_project_dir_relative_path: Path


@dataclass(frozen=True)
class UpgradeDecision:
    project: str
    repository: str
    base_branch: str
    pr_branch: str
    used_version: VersionInfo
    latest_version: VersionInfo
    changed: bool = False

    @property
    def files_only(self) -> bool:
        return self.used_version.version == self.latest_version.version


@dataclass(frozen=True)
class PullRequestRecord:
    """Pull request as reported by the host."""

    number: int
    head_ref: str
    state: str
    html_url: str = ""
    labels: Tuple[str, ...] = ()
    reviewers: Tuple[str, ...] = ()
    assignees: Tuple[str, ...] = ()

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"


@dataclass(frozen=True)
class GitHubUser:
    login: str
    id: Optional[int] = None


@dataclass
class UpgradeOutcome:
    """Terminal result of one target run."""

    target: str
    status: str
    message: str
    decision: Optional[UpgradeDecision] = None
    pull_request: Optional[PullRequestRecord] = None
    closed: List[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == OUTCOME_FAILED
