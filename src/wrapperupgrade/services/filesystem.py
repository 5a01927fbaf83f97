"""Filesystem helpers for wrapperupgrade."""

import logging
import shutil
from pathlib import Path

from wrapperupgrade.errors import WrapperUpgradeError


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def checkout_dir(self, work_dir: str, target_name: str) -> Path:
        return Path(work_dir).resolve() / "git-clones" / target_name

    def prepare_checkout_dir(self, path: Path) -> Path:
        """Remove a checkout left by a previous run so the clone starts clean."""
        if path.exists():
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except OSError as exc:
                raise WrapperUpgradeError(
                    f"Could not remove previous checkout {path}: {exc}"
                ) from exc
        path.parent.mkdir(parents=True, exist_ok=True)
        return path
