"""Configuration loader for wrapperupgrade."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from wrapperupgrade.errors import ConfigError
from wrapperupgrade.models import UpgradeOptions, UpgradeTarget


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults and upgrade targets."""

    SUPPORTED_KEYS = {
        "dry_run",
        "unsigned_commits",
        "verbose",
        "log_file",
        "work_dir",
        "api_url",
        "clone_base_url",
        "max_workers",
        "timeout_minutes",
        "report_file",
        "upgrades",
    }
    TARGET_KEYS = {"name", "repo", "base_branch", "dir", "build_tool", "options"}
    OPTION_KEYS = {
        "allow_pre_release",
        "recreate_closed_pull_request",
        "git_commit_extra_args",
        "labels",
        "reviewers",
        "assignees",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigError(f"Unknown configuration keys: {unknown_list}")

        return parsed

    def parse_targets(self, entries: Any) -> List[UpgradeTarget]:
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise ConfigError("'upgrades' must be a list of upgrade targets.")

        targets: List[UpgradeTarget] = []
        seen = set()
        for index, entry in enumerate(entries):
            target = self._parse_target(index, entry)
            if target.name in seen:
                raise ConfigError(f"Duplicate upgrade name '{target.name}'.")
            seen.add(target.name)
            targets.append(target)
        return targets

    def _parse_target(self, index: int, entry: Any) -> UpgradeTarget:
        if not isinstance(entry, dict):
            raise ConfigError(f"Upgrade #{index + 1} must be a mapping.")

        unknown = sorted(set(entry.keys()) - self.TARGET_KEYS)
        if unknown:
            raise ConfigError(f"Unknown keys in upgrade #{index + 1}: {', '.join(unknown)}")

        for required in ("name", "repo"):
            value = entry.get(required)
            if not isinstance(value, str) or not value.strip():
                raise ConfigError(f"Upgrade #{index + 1} must define a non-empty '{required}'.")

        name = entry["name"].strip()
        if "/" in name or "\\" in name or name in {".", ".."}:
            raise ConfigError(f"Upgrade name '{name}' must not contain path separators.")

        return UpgradeTarget(
            name=name,
            repo=entry["repo"].strip(),
            base_branch=str(entry.get("base_branch") or "main"),
            dir=str(entry.get("dir") or "."),
            build_tool=str(entry.get("build_tool") or "gradle").lower(),
            options=self._parse_options(name, entry.get("options")),
        )

    def _parse_options(self, name: str, options: Any) -> UpgradeOptions:
        if options is None:
            return UpgradeOptions()
        if not isinstance(options, dict):
            raise ConfigError(f"'options' of upgrade '{name}' must be a mapping.")

        unknown = sorted(set(options.keys()) - self.OPTION_KEYS)
        if unknown:
            raise ConfigError(f"Unknown options in upgrade '{name}': {', '.join(unknown)}")

        return UpgradeOptions(
            allow_pre_release=bool(options.get("allow_pre_release", False)),
            recreate_closed_pull_request=bool(options.get("recreate_closed_pull_request", False)),
            git_commit_extra_args=self._string_list(name, options, "git_commit_extra_args"),
            labels=self._string_list(name, options, "labels"),
            reviewers=self._string_list(name, options, "reviewers"),
            assignees=self._string_list(name, options, "assignees"),
        )

    def _string_list(self, name: str, options: Dict[str, Any], key: str) -> Tuple[str, ...]:
        value = options.get(key)
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise ConfigError(f"Option '{key}' of upgrade '{name}' must be a list of strings.")
        return tuple(item for item in value if item.strip())
