"""Domain errors for wrapperupgrade."""

from typing import List, Optional


class WrapperUpgradeError(RuntimeError):
    """Raised when the upgrade cannot continue safely."""


class ConfigError(WrapperUpgradeError):
    """Raised when the configuration file or options are invalid."""


class CommandError(WrapperUpgradeError):
    """Raised when a local command exits with a non-zero code."""

    def __init__(self, cmd: List[str], returncode: int, output: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.output = output
        message = f"Command failed ({returncode}): {' '.join(self.cmd)}"
        if output:
            message = f"{message}\n{output}"
        super().__init__(message)


class GitHubError(WrapperUpgradeError):
    """Raised when a GitHub API call fails."""

    def __init__(
        self,
        method: str,
        url: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.method = method
        self.url = url
        self.status_code = status_code
        status = f" ({status_code})" if status_code is not None else ""
        super().__init__(f"GitHub API {method} {url} failed{status}: {message}")
