from wrapperupgrade.models import PullRequestRecord
from wrapperupgrade.services.pull_requests import (
    branch_prefix,
    closed_pr_exists,
    pr_branch_name,
    pull_requests_to_close,
)


def _pr(number, version, state="open", project="app", tool="gradle"):
    return PullRequestRecord(
        number=number,
        head_ref=f"{project}-{tool}-wrapper-{version}",
        state=state,
    )


def test_branch_name_is_derived_from_project_tool_and_version():
    assert branch_prefix("app", "Gradle") == "app-gradle-wrapper-"
    assert pr_branch_name("app", "Gradle", "7.6") == "app-gradle-wrapper-7.6"
    assert pr_branch_name("app", "Gradle", "7.6") == pr_branch_name("app", "gradle", "7.6")


def test_closed_pr_exists_matches_exact_closed_branch():
    records = {_pr(1, "7.6", state="closed"), _pr(2, "7.5", state="open")}

    assert closed_pr_exists(records, "app-gradle-wrapper-7.6")
    assert not closed_pr_exists(records, "app-gradle-wrapper-7.5")
    assert not closed_pr_exists(records, "app-gradle-wrapper-7.6.1")


def test_pull_requests_to_close_only_selects_older_open_requests():
    older = _pr(1, "1.0")
    old = _pr(2, "1.1")
    newer = _pr(3, "1.3")
    same = _pr(4, "1.2")
    closed_old = _pr(5, "0.9", state="closed")

    to_close = pull_requests_to_close(
        {older, old, newer, same, closed_old},
        "app",
        "Gradle",
        "1.2",
    )

    assert to_close == {older, old}


def test_pull_requests_to_close_ignores_other_projects():
    foreign = _pr(1, "1.0", project="other")

    assert pull_requests_to_close({foreign}, "app", "Gradle", "1.2") == set()


def test_pull_requests_to_close_compares_numerically():
    nine = _pr(1, "2.9")

    assert pull_requests_to_close({nine}, "app", "Gradle", "2.10") == {nine}
