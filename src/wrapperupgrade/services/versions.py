"""Version comparison for wrapper upgrades.

Versions are compared with dotted-numeric semantics, so ``2.10`` is newer than
``2.9``. PEP 440 parsing from ``packaging`` is used when both sides are valid
PEP 440 versions. Build tools also publish versions such as ``8.0-milestone-1``
that PEP 440 rejects; for those, both sides are compared as
``major.minor.micro.patch`` plus an optional qualifier, where a release without
a qualifier is newer than any qualified build of the same numbers.
"""

import re
from typing import Optional, Tuple

from packaging import version

from wrapperupgrade.models import VersionInfo

_NUMBERED = re.compile(r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:\.(\d+))?(?:[-.+_]?(.+))?$")


def _parse_pep440(value: str) -> Optional[version.Version]:
    try:
        return version.Version(value)
    except version.InvalidVersion:
        return None


def _parse_numbered(value: str) -> Tuple[Tuple[int, int, int, int], Optional[str]]:
    match = _NUMBERED.match(value)
    if not match:
        return (0, 0, 0, 0), None
    numbers = tuple(int(group or 0) for group in match.groups()[:4])
    qualifier = match.group(5)
    return numbers, qualifier.lower() if qualifier else None


def _compare_numbered(left: str, right: str) -> int:
    left_numbers, left_qualifier = _parse_numbered(left)
    right_numbers, right_qualifier = _parse_numbered(right)
    if left_numbers != right_numbers:
        return -1 if left_numbers < right_numbers else 1
    if left_qualifier == right_qualifier:
        return 0
    if left_qualifier is None:
        return 1
    if right_qualifier is None:
        return -1
    return -1 if left_qualifier < right_qualifier else 1


def compare_versions(left: str, right: str) -> int:
    """Return -1, 0 or 1 as ``left`` is older, equal or newer than ``right``."""
    left = left.strip()
    right = right.strip()
    parsed_left = _parse_pep440(left)
    parsed_right = _parse_pep440(right)
    if parsed_left is not None and parsed_right is not None:
        if parsed_left == parsed_right:
            return 0
        return -1 if parsed_left < parsed_right else 1
    return _compare_numbered(left, right)


def is_newer(candidate: str, reference: str) -> bool:
    return compare_versions(candidate, reference) > 0


def effective_latest(used: VersionInfo, latest: VersionInfo) -> VersionInfo:
    """Pick the upgrade target, never going below the version already in use."""
    if compare_versions(used.version, latest.version) >= 0:
        return used
    return latest


def version_from_branch(branch: str, prefix: str) -> Optional[str]:
    if not branch.startswith(prefix):
        return None
    suffix = branch[len(prefix):]
    return suffix or None
