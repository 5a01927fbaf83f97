import hashlib
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Set

import requests
from rich.console import Console
from rich.markup import escape

from .errors import WrapperUpgradeError
from .models import (
    OUTCOME_BRANCH_EXISTS,
    OUTCOME_CLOSED_PR_EXISTS,
    OUTCOME_DRY_RUN,
    OUTCOME_FAILED,
    OUTCOME_NO_CHANGES,
    OUTCOME_PUBLISHED,
    PullRequestRecord,
    RunSettings,
    UpgradeDecision,
    UpgradeOutcome,
    UpgradeTarget,
    WorkspaceHandle,
)
from .services.build_tools import BuildToolStrategy, get_strategy
from .services.command_runner import CommandRunner
from .services.filesystem import FileSystemService
from .services.git_workspace import GitWorkspaceService
from .services.github import PullRequestGateway
from .services.pull_requests import (
    branch_prefix,
    closed_pr_exists,
    pr_branch_name,
    pull_requests_to_close,
)
from .services.report import ReportService
from .services.versions import effective_latest

console = Console()
logger = logging.getLogger("wrapperupgrade")

_OUTCOME_STYLES = {
    OUTCOME_PUBLISHED: "green",
    OUTCOME_DRY_RUN: "cyan",
    OUTCOME_NO_CHANGES: "blue",
    OUTCOME_BRANCH_EXISTS: "yellow",
    OUTCOME_CLOSED_PR_EXISTS: "yellow",
    OUTCOME_FAILED: "bold red",
}


class WrapperUpgrader:
    """Decides whether one target needs a wrapper upgrade and publishes it.

    A run walks the target through clone, version resolution, the branch and
    closed pull request checks, wrapper regeneration, and finally publication.
    Every terminal state is reported as an :class:`UpgradeOutcome`.
    """

    REGENERATION_PASSES = 2

    def __init__(
        self,
        target: UpgradeTarget,
        settings: RunSettings,
        strategy: Optional[BuildToolStrategy] = None,
        git_workspace: Optional[GitWorkspaceService] = None,
        gateway: Optional[PullRequestGateway] = None,
        filesystem_service: Optional[FileSystemService] = None,
        command_runner: Optional[CommandRunner] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.target = target
        self.settings = settings
        self.timeout_seconds = timeout_seconds
        self.deadline: Optional[float] = None
        self.current_step_name: Optional[str] = None

        self.command_runner = command_runner or CommandRunner(
            logger=logger,
            default_timeout=settings.command_timeout,
        )
        self.filesystem_service = filesystem_service or FileSystemService(logger=logger)
        self.git_workspace = git_workspace or GitWorkspaceService(
            command_runner=self.command_runner,
            logger=logger,
            clone_base_url=settings.clone_base_url,
        )
        self.gateway = gateway or PullRequestGateway(
            logger=logger,
            api_url=settings.api_url,
            token=settings.github_token,
            timeout_seconds=settings.request_timeout,
            requests_module=requests,
        )
        self.strategy = strategy or get_strategy(
            target.build_tool,
            command_runner=self.command_runner,
            logger=logger,
            requests_module=requests,
            timeout_seconds=settings.request_timeout,
        )

    @property
    def build_tool_name(self) -> str:
        return self.strategy.build_tool_name()

    def _run_step(self, name: str, callback: Callable, *args, **kwargs):
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise WrapperUpgradeError(
                f"Upgrade of '{self.target.name}' timed out after {self.timeout_seconds:.0f}s "
                f"before step '{name}'."
            )
        logger.debug("[%s] %s", self.target.name, name)
        self.current_step_name = name
        result = callback(*args, **kwargs)
        self.current_step_name = None
        return result

    def prepare_workspace(self) -> WorkspaceHandle:
        checkout_dir = self.filesystem_service.checkout_dir(self.settings.work_dir, self.target.name)
        root_project_dir = Path(os.path.normpath(checkout_dir / self.target.dir))
        try:
            relative_path = root_project_dir.relative_to(checkout_dir)
        except ValueError as exc:
            raise WrapperUpgradeError(
                f"Project dir '{self.target.dir}' of '{self.target.name}' is outside the repository."
            ) from exc

        self.filesystem_service.prepare_checkout_dir(checkout_dir)
        return WorkspaceHandle(
            checkout_dir=checkout_dir,
            root_project_dir=root_project_dir,
            root_project_dir_relative_path=relative_path,
        )

    def clone(self, workspace: WorkspaceHandle):
        self.git_workspace.clone(
            self.target.repo,
            self.target.base_branch,
            workspace.checkout_dir,
            unsigned_commits=self.settings.unsigned_commits,
        )

    def resolve_decision(self, workspace: WorkspaceHandle) -> UpgradeDecision:
        used = self.strategy.extract_current_version(workspace.root_project_dir)
        looked_up = self.strategy.lookup_latest_version(self.target.options.allow_pre_release)
        latest = effective_latest(used, looked_up)
        if latest is used and used.version != looked_up.version:
            logger.info(
                "%s %s in use for project '%s' is newer than looked up %s; keeping it",
                self.build_tool_name,
                used.version,
                self.target.name,
                looked_up.version,
            )

        repository = self.gateway.get_repository(self.target.repo).get("full_name") or self.target.repo
        return UpgradeDecision(
            project=self.target.name,
            repository=repository,
            base_branch=self.target.base_branch,
            pr_branch=pr_branch_name(self.target.name, self.build_tool_name, latest.version),
            used_version=used,
            latest_version=latest,
        )

    def regenerate_wrapper(self, workspace: WorkspaceHandle, decision: UpgradeDecision):
        """Run the wrapper generator until its files stop changing, at most twice."""
        fingerprint = None
        for attempt in range(1, self.REGENERATION_PASSES + 1):
            self.strategy.run_wrapper(workspace.root_project_dir, decision.latest_version)
            previous, fingerprint = fingerprint, self._wrapper_fingerprint(workspace)
            if attempt > 1 and previous != fingerprint:
                logger.debug(
                    "%s wrapper files of project '%s' still changed on pass %s; "
                    "the generator may need another pass to converge",
                    self.build_tool_name,
                    self.target.name,
                    attempt,
                )

    def _wrapper_fingerprint(self, workspace: WorkspaceHandle) -> str:
        digest = hashlib.sha256()
        for path in sorted(self.strategy.wrapper_files(workspace.root_project_dir)):
            digest.update(str(path).encode("utf-8"))
            if path.is_file():
                digest.update(path.read_bytes())
        return digest.hexdigest()

    def short_description(self, decision: UpgradeDecision, workspace: WorkspaceHandle) -> str:
        if decision.files_only:
            title = (
                f"Update {self.build_tool_name} Wrapper version "
                f"{decision.latest_version.version} files"
            )
        else:
            title = (
                f"Bump {self.build_tool_name} Wrapper from {decision.used_version.version} "
                f"to {decision.latest_version.version}"
            )

        relative_path = workspace.root_project_dir_relative_path.as_posix()
        if relative_path and relative_path != ".":
            path = relative_path if relative_path.startswith("/") else f"/{relative_path}"
            title = f"{title} in {path}"
        return title

    def long_description(self, decision: UpgradeDecision) -> str:
        latest = decision.latest_version.version
        if decision.files_only:
            return f"Update {self.build_tool_name} Wrapper version {latest} files."

        return (
            f"Bump {self.build_tool_name} Wrapper from {decision.used_version.version} to {latest}."
            "\n\n"
            f"Release notes of {self.build_tool_name} {latest} can be found here:"
            "\n"
            f"{self.strategy.release_notes_link(latest)}"
        )

    def publish(self, workspace: WorkspaceHandle, decision: UpgradeDecision) -> Optional[PullRequestRecord]:
        title = self.short_description(decision, workspace)
        body = self.long_description(decision)
        self.git_workspace.commit_and_push(
            workspace.checkout_dir,
            self.strategy.wrapper_files(workspace.root_project_dir),
            decision.pr_branch,
            body,
            extra_commit_args=self.target.options.git_commit_extra_args,
            dry_run=self.settings.dry_run,
        )

        if self.settings.dry_run:
            logger.info(
                "Dry run: Skipping creation of pull request '%s' that would upgrade %s Wrapper to %s for project '%s'",
                decision.pr_branch,
                self.build_tool_name,
                decision.latest_version.version,
                decision.project,
            )
            return None

        pull_request = self.gateway.create_pull_request(
            decision.repository,
            head=decision.pr_branch,
            base=decision.base_branch,
            title=title,
            body=body,
        )
        logger.info(
            "Pull request '%s' created at %s to upgrade %s Wrapper to %s for project '%s'",
            decision.pr_branch,
            pull_request.html_url,
            self.build_tool_name,
            decision.latest_version.version,
            decision.project,
        )
        return pull_request

    def close_pull_requests(
        self,
        decision: UpgradeDecision,
        pull_requests: Set[PullRequestRecord],
    ) -> List[int]:
        closed: List[int] = []
        for record in sorted(pull_requests, key=lambda item: item.number):
            if self.settings.dry_run:
                logger.info(
                    "Dry run: Skipping closure of pull request #%s on project '%s' because target %s Wrapper version is older than %s",
                    record.number,
                    decision.project,
                    self.build_tool_name,
                    decision.latest_version.version,
                )
            try:
                closed_now = self.gateway.close_pull_request(
                    decision.repository,
                    record,
                    dry_run=self.settings.dry_run,
                )
            except WrapperUpgradeError as exc:
                logger.warning("Error closing pull request #%s: %s", record.number, exc)
                continue
            if not closed_now:
                continue
            logger.info(
                "Pull request #%s on project '%s' has been closed because target %s Wrapper version is older than %s",
                record.number,
                decision.project,
                self.build_tool_name,
                decision.latest_version.version,
            )
            closed.append(record.number)
        return closed

    def enrich_pull_request(self, decision: UpgradeDecision, pull_request: PullRequestRecord):
        options = self.target.options
        self.gateway.add_labels(decision.repository, pull_request, options.labels)
        self.gateway.request_reviewers(decision.repository, pull_request, options.reviewers)
        self.gateway.add_assignees(decision.repository, pull_request, options.assignees)

    def upgrade(self) -> UpgradeOutcome:
        """Run the target through every state; fatal errors propagate."""
        if self.timeout_seconds:
            self.deadline = time.monotonic() + self.timeout_seconds
            self.command_runner.deadline = self.deadline

        workspace = self._run_step("prepare_workspace", self.prepare_workspace)
        self._run_step("clone", self.clone, workspace)
        decision = self._run_step("resolve_versions", self.resolve_decision, workspace)
        tool = self.build_tool_name
        latest = decision.latest_version.version

        if self._run_step("check_branch", self.gateway.branch_exists, decision.repository, decision.pr_branch):
            return self._outcome(
                OUTCOME_BRANCH_EXISTS,
                f"GitHub branch '{decision.pr_branch}' to upgrade {tool} Wrapper to {latest} "
                f"already exists for project '{decision.project}'",
                decision,
            )

        existing = self._run_step(
            "list_pull_requests",
            self.gateway.list_pull_requests,
            decision.repository,
            branch_prefix(decision.project, tool),
        )
        if closed_pr_exists(existing, decision.pr_branch) and not self.target.options.recreate_closed_pull_request:
            return self._outcome(
                OUTCOME_CLOSED_PR_EXISTS,
                f"A closed pull request from branch '{decision.pr_branch}' to upgrade {tool} Wrapper "
                f"to {latest} already exists for project '{decision.project}'. "
                "Use `recreate_closed_pull_request` option to recreate it.",
                decision,
            )
        to_close = pull_requests_to_close(existing, decision.project, tool, latest)

        self._run_step("regenerate_wrapper", self.regenerate_wrapper, workspace, decision)
        changed = self._run_step(
            "detect_changes",
            self.git_workspace.has_uncommitted_changes,
            workspace.checkout_dir,
        )
        if not changed:
            return self._outcome(
                OUTCOME_NO_CHANGES,
                f"No pull request created to upgrade {tool} Wrapper to {latest} since already "
                f"on latest version for project '{decision.project}'",
                decision,
            )

        decision = replace(decision, changed=True)
        pull_request = self._run_step("publish", self.publish, workspace, decision)
        closed = self._run_step("close_superseded", self.close_pull_requests, decision, to_close)

        if pull_request is None:
            return self._outcome(
                OUTCOME_DRY_RUN,
                f"Dry run: branch '{decision.pr_branch}' committed locally in "
                f"{workspace.checkout_dir} for project '{decision.project}'",
                decision,
            )

        self._run_step("enrich_pull_request", self.enrich_pull_request, decision, pull_request)
        outcome = self._outcome(
            OUTCOME_PUBLISHED,
            f"Pull request #{pull_request.number} opened to upgrade {tool} Wrapper to {latest} "
            f"for project '{decision.project}'",
            decision,
        )
        outcome.pull_request = pull_request
        outcome.closed = closed
        return outcome

    def run(self) -> UpgradeOutcome:
        try:
            outcome = self.upgrade()
        except WrapperUpgradeError as exc:
            step = self.current_step_name or "run"
            logger.error("Upgrade '%s' failed during %s: %s", self.target.name, step, exc)
            outcome = UpgradeOutcome(
                target=self.target.name,
                status=OUTCOME_FAILED,
                message=f"Upgrade '{self.target.name}' failed during {step}",
                error=str(exc),
            )
        except Exception as exc:
            logger.exception("Unexpected error while upgrading '%s'", self.target.name)
            outcome = UpgradeOutcome(
                target=self.target.name,
                status=OUTCOME_FAILED,
                message=f"Unexpected error while upgrading '{self.target.name}'",
                error=str(exc),
            )
        else:
            logger.info(outcome.message)

        style = _OUTCOME_STYLES.get(outcome.status, "white")
        console.print(f"[{style}]{escape(outcome.target)}: {escape(outcome.message)}[/{style}]")
        return outcome

    def _outcome(self, status: str, message: str, decision: UpgradeDecision) -> UpgradeOutcome:
        return UpgradeOutcome(
            target=self.target.name,
            status=status,
            message=message,
            decision=decision,
        )


def run_upgrades(
    targets: Sequence[UpgradeTarget],
    settings: RunSettings,
    max_workers: int = 1,
    timeout_seconds: Optional[float] = None,
    report_service: Optional[ReportService] = None,
    upgrader_factory: Callable[..., WrapperUpgrader] = WrapperUpgrader,
) -> List[UpgradeOutcome]:
    """Upgrade every target independently, ``max_workers`` at a time."""

    def _run_one(target: UpgradeTarget) -> UpgradeOutcome:
        try:
            upgrader = upgrader_factory(target=target, settings=settings, timeout_seconds=timeout_seconds)
        except WrapperUpgradeError as exc:
            logger.error("Upgrade '%s' could not start: %s", target.name, exc)
            outcome = UpgradeOutcome(
                target=target.name,
                status=OUTCOME_FAILED,
                message=f"Upgrade '{target.name}' could not start",
                error=str(exc),
            )
        else:
            outcome = upgrader.run()
        if report_service:
            report_service.add_outcome(outcome)
        return outcome

    workers = max(1, min(max_workers, len(targets) or 1))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="wrapperupgrade") as executor:
        return list(executor.map(_run_one, targets))
