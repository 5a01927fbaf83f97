import io
import logging
import sys
import time

import pytest
from rich.console import Console

import wrapperupgrade.core as core_module
from wrapperupgrade.core import WrapperUpgrader, run_upgrades
from wrapperupgrade.errors import CommandError, GitHubError, WrapperUpgradeError
from wrapperupgrade.models import (
    OUTCOME_BRANCH_EXISTS,
    OUTCOME_CLOSED_PR_EXISTS,
    OUTCOME_DRY_RUN,
    OUTCOME_FAILED,
    OUTCOME_NO_CHANGES,
    OUTCOME_PUBLISHED,
    PullRequestRecord,
    RunSettings,
    UpgradeOptions,
    UpgradeTarget,
    VersionInfo,
)
from wrapperupgrade.services.command_runner import CommandRunner
from wrapperupgrade.services.report import ReportService


class FakeStrategy:
    def __init__(self, used="7.5", latest="7.6"):
        self.used = used
        self.latest = latest
        self.wrapper_runs = []
        self.lookups = []

    def build_tool_name(self):
        return "Gradle"

    def extract_current_version(self, root_project_dir):
        return VersionInfo(self.used)

    def lookup_latest_version(self, allow_pre_release):
        self.lookups.append(allow_pre_release)
        return VersionInfo(self.latest)

    def run_wrapper(self, root_project_dir, version):
        self.wrapper_runs.append(version.version)

    def wrapper_files(self, root_project_dir):
        return [root_project_dir / "gradlew", root_project_dir / "gradle" / "wrapper" / "gradle-wrapper.properties"]

    def release_notes_link(self, version):
        return f"https://docs.gradle.org/{version}/release-notes.html"


class FakeHost:
    """In-memory GitHub repository shared by the fake workspace and gateway."""

    def __init__(self, pull_requests=()):
        self.branches = {"main"}
        self.pull_requests = {record.number: record for record in pull_requests}
        self.next_number = 100


class FakeGitWorkspace:
    def __init__(self, host, changes=True):
        self.host = host
        self.changes = changes
        self.clones = []
        self.commits = []

    def clone(self, repo, base_branch, dest_dir, unsigned_commits=False):
        dest_dir.mkdir(parents=True, exist_ok=True)
        self.clones.append((repo, base_branch, dest_dir, unsigned_commits))

    def has_uncommitted_changes(self, checkout_dir):
        return self.changes

    def commit_and_push(self, checkout_dir, files, branch, message, extra_commit_args=(), dry_run=False):
        self.commits.append(
            {
                "files": list(files),
                "branch": branch,
                "message": message,
                "extra_commit_args": tuple(extra_commit_args),
                "dry_run": dry_run,
            }
        )
        if not dry_run:
            self.host.branches.add(branch)


class FakeGateway:
    def __init__(self, host):
        self.host = host
        self.mutations = []
        self.fail_create = False
        self.fail_close = set()

    def get_repository(self, repo):
        return {"full_name": "acme/app"}

    def branch_exists(self, repo, branch):
        return branch in self.host.branches

    def list_pull_requests(self, repo, branch_prefix):
        return {
            record
            for record in self.host.pull_requests.values()
            if record.head_ref.startswith(branch_prefix)
        }

    def create_pull_request(self, repo, head, base, title, body):
        if self.fail_create:
            raise GitHubError("POST", "/repos/acme/app/pulls", "Validation Failed", status_code=422)
        number = self.host.next_number
        self.host.next_number += 1
        record = PullRequestRecord(
            number=number,
            head_ref=head,
            state="open",
            html_url=f"https://github.com/acme/app/pull/{number}",
        )
        self.host.pull_requests[number] = record
        self.mutations.append(("create", head, base, title, body))
        return record

    def close_pull_request(self, repo, record, dry_run=False):
        if dry_run:
            return False
        if record.number in self.fail_close:
            raise GitHubError("PATCH", f"/repos/acme/app/pulls/{record.number}", "boom", status_code=500)
        self.host.pull_requests[record.number] = PullRequestRecord(
            number=record.number,
            head_ref=record.head_ref,
            state="closed",
        )
        self.mutations.append(("close", record.number))
        return True

    def add_labels(self, repo, record, labels):
        if labels:
            self.mutations.append(("labels", record.number, tuple(labels)))

    def request_reviewers(self, repo, record, reviewers):
        if reviewers:
            self.mutations.append(("reviewers", record.number, tuple(reviewers)))

    def add_assignees(self, repo, record, assignees):
        if assignees:
            self.mutations.append(("assignees", record.number, tuple(assignees)))


def _pr(number, version, state="open"):
    return PullRequestRecord(number=number, head_ref=f"app-gradle-wrapper-{version}", state=state)


def build_upgrader(
    tmp_path,
    host,
    strategy=None,
    options=None,
    dry_run=False,
    changes=True,
    dir=".",
    timeout_seconds=None,
    command_runner=None,
    name="app",
):
    target = UpgradeTarget(
        name=name,
        repo="acme/app",
        base_branch="main",
        dir=dir,
        options=options or UpgradeOptions(),
    )
    settings = RunSettings(dry_run=dry_run, work_dir=str(tmp_path / "build"))
    workspace = FakeGitWorkspace(host, changes=changes)
    gateway = FakeGateway(host)
    upgrader = WrapperUpgrader(
        target=target,
        settings=settings,
        strategy=strategy or FakeStrategy(),
        git_workspace=workspace,
        gateway=gateway,
        command_runner=command_runner,
        timeout_seconds=timeout_seconds,
    )
    return upgrader, workspace, gateway


def test_publishes_pull_request_for_new_version(tmp_path):
    host = FakeHost()
    upgrader, workspace, gateway = build_upgrader(tmp_path, host)

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_PUBLISHED
    assert outcome.decision.pr_branch == "app-gradle-wrapper-7.6"
    assert outcome.decision.changed is True
    assert outcome.pull_request.number == 100
    assert gateway.mutations[0] == (
        "create",
        "app-gradle-wrapper-7.6",
        "main",
        "Bump Gradle Wrapper from 7.5 to 7.6",
        "Bump Gradle Wrapper from 7.5 to 7.6.\n\n"
        "Release notes of Gradle 7.6 can be found here:\n"
        "https://docs.gradle.org/7.6/release-notes.html",
    )
    commit = workspace.commits[0]
    assert commit["branch"] == "app-gradle-wrapper-7.6"
    assert commit["message"].startswith("Bump Gradle Wrapper from 7.5 to 7.6.")
    assert [path.name for path in commit["files"]] == ["gradlew", "gradle-wrapper.properties"]


def test_clones_into_deterministic_checkout_dir(tmp_path):
    host = FakeHost()
    upgrader, workspace, _ = build_upgrader(tmp_path, host)

    upgrader.run()

    repo, base_branch, dest_dir, _ = workspace.clones[0]
    assert (repo, base_branch) == ("acme/app", "main")
    assert dest_dir == (tmp_path / "build").resolve() / "git-clones" / "app"


def test_wrapper_is_regenerated_twice(tmp_path):
    strategy = FakeStrategy()
    upgrader, _, _ = build_upgrader(tmp_path, FakeHost(), strategy=strategy)

    upgrader.run()

    assert strategy.wrapper_runs == ["7.6", "7.6"]


def test_never_regresses_when_lookup_returns_older_version(tmp_path):
    strategy = FakeStrategy(used="7.6", latest="7.5")
    upgrader, workspace, gateway = build_upgrader(tmp_path, FakeHost(), strategy=strategy)

    outcome = upgrader.run()

    assert outcome.decision.latest_version == VersionInfo("7.6")
    assert outcome.decision.pr_branch == "app-gradle-wrapper-7.6"
    assert strategy.wrapper_runs == ["7.6", "7.6"]
    assert gateway.mutations[0][3] == "Update Gradle Wrapper version 7.6 files"
    assert gateway.mutations[0][4] == "Update Gradle Wrapper version 7.6 files."


def test_lookup_honors_allow_pre_release(tmp_path):
    strategy = FakeStrategy()
    upgrader, _, _ = build_upgrader(
        tmp_path,
        FakeHost(),
        strategy=strategy,
        options=UpgradeOptions(allow_pre_release=True),
    )

    upgrader.run()

    assert strategy.lookups == [True]


def test_second_run_skips_because_branch_exists(tmp_path):
    host = FakeHost()
    first, _, _ = build_upgrader(tmp_path, host)
    second, second_workspace, second_gateway = build_upgrader(tmp_path, host)

    first_outcome = first.run()
    second_outcome = second.run()

    assert first_outcome.status == OUTCOME_PUBLISHED
    assert second_outcome.status == OUTCOME_BRANCH_EXISTS
    assert "already exists" in second_outcome.message
    assert len(host.pull_requests) == 1
    assert [branch for branch in host.branches if branch != "main"] == ["app-gradle-wrapper-7.6"]
    assert second_workspace.commits == []
    assert second_gateway.mutations == []


def test_dry_run_makes_no_host_mutation_but_commits_locally(tmp_path):
    host = FakeHost(pull_requests=[_pr(1, "7.4")])
    upgrader, workspace, gateway = build_upgrader(tmp_path, host, dry_run=True)

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_DRY_RUN
    assert gateway.mutations == []
    assert host.branches == {"main"}
    assert host.pull_requests[1].state == "open"
    assert workspace.commits[0]["dry_run"] is True
    assert workspace.commits[0]["branch"] == "app-gradle-wrapper-7.6"


def test_closed_pull_request_is_respected_without_recreate_option(tmp_path):
    host = FakeHost(pull_requests=[_pr(5, "7.6", state="closed")])
    strategy = FakeStrategy()
    upgrader, workspace, gateway = build_upgrader(tmp_path, host, strategy=strategy)

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_CLOSED_PR_EXISTS
    assert "recreate_closed_pull_request" in outcome.message
    assert strategy.wrapper_runs == []
    assert workspace.commits == []
    assert gateway.mutations == []


def test_closed_pull_request_is_recreated_when_enabled(tmp_path):
    host = FakeHost(pull_requests=[_pr(5, "7.6", state="closed")])
    upgrader, workspace, gateway = build_upgrader(
        tmp_path,
        host,
        options=UpgradeOptions(recreate_closed_pull_request=True),
    )

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_PUBLISHED
    assert workspace.commits[0]["branch"] == "app-gradle-wrapper-7.6"
    assert [mutation[0] for mutation in gateway.mutations] == ["create"]


def test_superseded_pull_requests_are_closed_but_newer_ones_kept(tmp_path):
    host = FakeHost(pull_requests=[_pr(1, "1.0"), _pr(2, "1.1"), _pr(3, "1.3")])
    strategy = FakeStrategy(used="0.9", latest="1.2")
    upgrader, _, gateway = build_upgrader(tmp_path, host, strategy=strategy)

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_PUBLISHED
    assert sorted(outcome.closed) == [1, 2]
    assert host.pull_requests[1].state == "closed"
    assert host.pull_requests[2].state == "closed"
    assert host.pull_requests[3].state == "open"
    created = [mutation for mutation in gateway.mutations if mutation[0] == "create"]
    assert len(created) == 1
    assert created[0][1] == "app-gradle-wrapper-1.2"
    assert [mutation[0] for mutation in gateway.mutations] == ["create", "close", "close"]


def test_failure_to_close_one_pull_request_is_not_fatal(tmp_path):
    host = FakeHost(pull_requests=[_pr(1, "7.4"), _pr(2, "7.5.1")])
    upgrader, _, gateway = build_upgrader(tmp_path, host)
    gateway.fail_close = {1}

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_PUBLISHED
    assert outcome.closed == [2]


def test_no_diff_creates_nothing(tmp_path):
    host = FakeHost()
    upgrader, workspace, gateway = build_upgrader(tmp_path, host, changes=False)

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_NO_CHANGES
    assert "already on latest version" in outcome.message
    assert workspace.commits == []
    assert gateway.mutations == []
    assert host.branches == {"main"}


def test_title_mentions_project_sub_directory(tmp_path):
    upgrader, _, gateway = build_upgrader(tmp_path, FakeHost(), dir="services/backend")

    upgrader.run()

    assert gateway.mutations[0][3] == "Bump Gradle Wrapper from 7.5 to 7.6 in /services/backend"


def test_project_dir_outside_repository_fails(tmp_path):
    upgrader, workspace, _ = build_upgrader(tmp_path, FakeHost(), dir="../elsewhere")

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_FAILED
    assert "outside the repository" in outcome.error
    assert workspace.clones == []


def test_labels_reviewers_and_assignees_follow_creation(tmp_path):
    options = UpgradeOptions(labels=("dependencies",), reviewers=("octocat",), assignees=("hubot",))
    upgrader, _, gateway = build_upgrader(tmp_path, FakeHost(), options=options)

    upgrader.run()

    assert [mutation[0] for mutation in gateway.mutations] == [
        "create",
        "labels",
        "reviewers",
        "assignees",
    ]


def test_extra_commit_args_are_passed_to_commit(tmp_path):
    options = UpgradeOptions(git_commit_extra_args=("--gpg-sign=ABCDEF",))
    upgrader, workspace, _ = build_upgrader(tmp_path, FakeHost(), options=options)

    upgrader.run()

    assert workspace.commits[0]["extra_commit_args"] == ("--gpg-sign=ABCDEF",)


def test_pull_request_creation_failure_fails_the_target(tmp_path):
    upgrader, workspace, gateway = build_upgrader(tmp_path, FakeHost())
    gateway.fail_create = True

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_FAILED
    assert "Validation Failed" in outcome.error
    assert "publish" in outcome.message
    assert workspace.commits


def test_diff_failure_is_not_treated_as_no_changes(tmp_path):
    upgrader, workspace, _ = build_upgrader(tmp_path, FakeHost())

    def broken_diff(_checkout_dir):
        raise CommandError(["git", "diff", "--quiet", "--exit-code"], 128, "not a git repository")

    workspace.has_uncommitted_changes = broken_diff

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_FAILED
    assert "not a git repository" in outcome.error


def test_upgrade_propagates_fatal_errors(tmp_path):
    strategy = FakeStrategy()

    def failing_lookup(_allow_pre_release):
        raise WrapperUpgradeError("version service unavailable")

    strategy.lookup_latest_version = failing_lookup
    upgrader, _, _ = build_upgrader(tmp_path, FakeHost(), strategy=strategy)

    with pytest.raises(WrapperUpgradeError, match="version service unavailable"):
        upgrader.upgrade()


def test_timeout_aborts_whole_target(tmp_path, monkeypatch):
    ticks = iter([0.0])
    monkeypatch.setattr(core_module.time, "monotonic", lambda: next(ticks, 1000.0))
    upgrader, workspace, _ = build_upgrader(tmp_path, FakeHost(), timeout_seconds=60)

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_FAILED
    assert "timed out" in outcome.error
    assert workspace.clones == []


def test_run_upgrades_isolates_failures_and_keeps_order(tmp_path):
    host = FakeHost()
    targets = [
        UpgradeTarget(name="broken", repo="acme/broken"),
        UpgradeTarget(name="app", repo="acme/app"),
    ]
    settings = RunSettings(work_dir=str(tmp_path / "build"))
    report = ReportService(str(tmp_path / "report.json"), logger=core_module.logger)

    def factory(target, settings, timeout_seconds=None):
        if target.name == "broken":
            raise WrapperUpgradeError("Unknown build tool 'ant'.")
        return WrapperUpgrader(
            target=target,
            settings=settings,
            strategy=FakeStrategy(),
            git_workspace=FakeGitWorkspace(host),
            gateway=FakeGateway(host),
            timeout_seconds=timeout_seconds,
        )

    outcomes = run_upgrades(
        targets,
        settings,
        max_workers=2,
        report_service=report,
        upgrader_factory=factory,
    )

    assert [outcome.target for outcome in outcomes] == ["broken", "app"]
    assert outcomes[0].status == OUTCOME_FAILED
    assert outcomes[1].status == OUTCOME_PUBLISHED
    assert len(report.report["targets"]) == 2


class RewritingStrategy(FakeStrategy):
    """Writes wrapper content on every pass, optionally different each time."""

    def __init__(self, converges):
        super().__init__()
        self.converges = converges

    def run_wrapper(self, root_project_dir, version):
        super().run_wrapper(root_project_dir, version)
        content = "stable" if self.converges else f"pass {len(self.wrapper_runs)}"
        (root_project_dir / "gradlew").write_text(content, encoding="utf-8")


def test_second_pass_still_changing_files_is_flagged(tmp_path, caplog):
    caplog.set_level(logging.DEBUG, logger="wrapperupgrade")
    upgrader, _, _ = build_upgrader(tmp_path, FakeHost(), strategy=RewritingStrategy(converges=False))

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_PUBLISHED
    assert any("may need another pass" in record.getMessage() for record in caplog.records)


def test_converged_second_pass_is_not_flagged(tmp_path, caplog):
    caplog.set_level(logging.DEBUG, logger="wrapperupgrade")
    upgrader, _, _ = build_upgrader(tmp_path, FakeHost(), strategy=RewritingStrategy(converges=True))

    upgrader.run()

    assert not any("may need another pass" in record.getMessage() for record in caplog.records)


class HangingStrategy(FakeStrategy):
    def __init__(self, command_runner):
        super().__init__()
        self.command_runner = command_runner

    def run_wrapper(self, root_project_dir, version):
        self.command_runner.run([sys.executable, "-c", "import time; time.sleep(5)"])


def test_hung_command_is_stopped_by_target_timeout(tmp_path):
    runner = CommandRunner(logger=core_module.logger)
    upgrader, workspace, gateway = build_upgrader(
        tmp_path,
        FakeHost(),
        strategy=HangingStrategy(runner),
        command_runner=runner,
        timeout_seconds=0.5,
    )
    started = time.monotonic()

    outcome = upgrader.run()

    assert time.monotonic() - started < 4
    assert outcome.status == OUTCOME_FAILED
    assert "timed out" in outcome.error
    assert "regenerate_wrapper" in outcome.message
    assert workspace.commits == []
    assert gateway.mutations == []


def test_outcome_line_prints_markup_characters_literally(tmp_path, monkeypatch):
    buffer = io.StringIO()
    monkeypatch.setattr(core_module, "console", Console(file=buffer, width=200))
    upgrader, _, _ = build_upgrader(tmp_path, FakeHost(), dir="../elsewhere", name="svc[/legacy]")

    outcome = upgrader.run()

    assert outcome.status == OUTCOME_FAILED
    assert "svc[/legacy]: Upgrade 'svc[/legacy]' failed during prepare_workspace" in buffer.getvalue()
