"""
wrapperupgrade - Keep Gradle and Maven wrappers up to date through pull requests
"""

__version__ = "0.1.0"

from .core import WrapperUpgrader, run_upgrades
from .errors import WrapperUpgradeError

__all__ = ["WrapperUpgrader", "WrapperUpgradeError", "run_upgrades"]
