"""Subprocess execution service for wrapperupgrade."""

import subprocess
import time
from pathlib import Path
from typing import List, Optional, Union

from wrapperupgrade.errors import CommandError, WrapperUpgradeError


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None, deadline: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout
        # time.monotonic() value after which no command may keep running
        self.deadline = deadline

    def run(
        self,
        cmd: List[str],
        cwd: Optional[Union[str, Path]] = None,
        check: bool = True,
        capture_output: bool = True,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd = [str(part) for part in cmd]
        cmd_str = " ".join(cmd)
        if cwd is not None:
            self.logger.debug("Executing in %s: %s", cwd, cmd_str)
        else:
            self.logger.debug("Executing: %s", cmd_str)

        effective_timeout = timeout if timeout is not None else self.default_timeout
        if self.deadline is not None:
            remaining = max(0.0, self.deadline - time.monotonic())
            if effective_timeout is None or remaining < effective_timeout:
                effective_timeout = remaining

        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd is not None else None,
                text=True,
                capture_output=capture_output,
                timeout=effective_timeout,
            )
        except FileNotFoundError as exc:
            raise WrapperUpgradeError(
                f"Required command not found: {cmd[0]}. Please install it and try again."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise WrapperUpgradeError(
                f"Command timed out after {effective_timeout:.1f}s: {cmd_str}"
            ) from exc
        except OSError as exc:
            raise WrapperUpgradeError(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0 or not check:
            return result

        output = ""
        if capture_output:
            output = "\n".join(
                part.strip() for part in (result.stdout, result.stderr) if part and part.strip()
            )
        raise CommandError(cmd, result.returncode, output)
