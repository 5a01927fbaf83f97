"""Actionable error catalog for wrapperupgrade."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "clone_failed": {
        "what": "Could not clone '{repo}' at branch '{branch}'.",
        "next": "Check the repository name, the base branch, and that git can authenticate to the host.",
    },
    "unknown_build_tool": {
        "what": "Unknown build tool '{tool}'.",
        "next": "Use one of: {supported}.",
    },
    "wrapper_properties_missing": {
        "what": "Wrapper properties file not found: {path}",
        "next": "Make sure `dir` points at the project root that contains the wrapper files.",
    },
    "wrapper_version_unreadable": {
        "what": "Could not read the wrapper version from {path}.",
        "next": "Check that `distributionUrl` references a released distribution.",
    },
    "github_auth_failed": {
        "what": "GitHub rejected the request for '{repo}' ({status}).",
        "next": "Export a token with repo scope in `WRAPPER_UPGRADE_GIT_TOKEN` and retry.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
