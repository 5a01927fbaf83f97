"""Pure helpers reconciling wrapper upgrade branches with existing pull requests."""

from typing import Iterable, Set

from wrapperupgrade.models import PullRequestRecord
from wrapperupgrade.services.versions import compare_versions, version_from_branch


def branch_prefix(project: str, build_tool_name: str) -> str:
    return f"{project}-{build_tool_name.lower()}-wrapper-"


def pr_branch_name(project: str, build_tool_name: str, version: str) -> str:
    return branch_prefix(project, build_tool_name) + version


def closed_pr_exists(records: Iterable[PullRequestRecord], branch: str) -> bool:
    return any(record.is_closed and record.head_ref == branch for record in records)


def pull_requests_to_close(
    records: Iterable[PullRequestRecord],
    project: str,
    build_tool_name: str,
    target_version: str,
) -> Set[PullRequestRecord]:
    """Open pull requests superseded by an upgrade to ``target_version``."""
    prefix = branch_prefix(project, build_tool_name)
    superseded = set()
    for record in records:
        if not record.is_open:
            continue
        encoded_version = version_from_branch(record.head_ref, prefix)
        if encoded_version is None:
            continue
        if compare_versions(encoded_version, target_version) < 0:
            superseded.add(record)
    return superseded
