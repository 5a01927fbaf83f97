"""Build tool strategies: version detection, latest lookup and wrapper regeneration."""

import os
import re
import sys
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Protocol, Sequence, Type
from xml.etree import ElementTree

import requests

from wrapperupgrade.errors import WrapperUpgradeError
from wrapperupgrade.errors_catalog import actionable_error
from wrapperupgrade.models import VersionInfo
from wrapperupgrade.services.versions import compare_versions


class BuildToolStrategy(Protocol):
    """Capabilities needed to upgrade the wrapper of one build tool."""

    def build_tool_name(self) -> str:
        ...

    def extract_current_version(self, root_project_dir: Path) -> VersionInfo:
        ...

    def lookup_latest_version(self, allow_pre_release: bool) -> VersionInfo:
        ...

    def run_wrapper(self, root_project_dir: Path, version: VersionInfo):
        ...

    def wrapper_files(self, root_project_dir: Path) -> List[Path]:
        ...

    def release_notes_link(self, version: str) -> str:
        ...


class _PropertiesWrapperStrategy:
    """Shared behaviour for wrappers pinned by a ``distributionUrl`` property."""

    NAME = ""
    PROPERTIES_FILE = ""
    DISTRIBUTION_PATTERN: Pattern[str] = re.compile(r"$^")
    WRAPPER_FILES: Sequence[str] = ()

    def __init__(self, command_runner, logger, requests_module=requests, timeout_seconds: float = 30.0):
        self.command_runner = command_runner
        self.logger = logger
        self.requests = requests_module
        self.timeout_seconds = timeout_seconds

    def build_tool_name(self) -> str:
        return self.NAME

    def extract_current_version(self, root_project_dir: Path) -> VersionInfo:
        properties_path = Path(root_project_dir) / self.PROPERTIES_FILE
        if not properties_path.is_file():
            raise WrapperUpgradeError(
                actionable_error("wrapper_properties_missing", path=str(properties_path))
            )

        try:
            content = properties_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise WrapperUpgradeError(f"Could not read {properties_path}: {exc}") from exc

        for line in content.splitlines():
            key, _, value = line.partition("=")
            if key.strip() != "distributionUrl":
                continue
            match = self.DISTRIBUTION_PATTERN.search(value.replace("\\", ""))
            if match:
                return VersionInfo(match.group("version"))

        raise WrapperUpgradeError(
            actionable_error("wrapper_version_unreadable", path=str(properties_path))
        )

    def wrapper_files(self, root_project_dir: Path) -> List[Path]:
        root = Path(root_project_dir)
        return [root / name for name in self.WRAPPER_FILES if (root / name).exists()]

    def _wrapper_script(self, root_project_dir: Path, unix_name: str, windows_name: str) -> str:
        name = windows_name if sys.platform == "win32" else unix_name
        script = Path(root_project_dir) / name
        if not script.is_file():
            raise WrapperUpgradeError(f"{self.NAME} wrapper script not found: {script}")
        if sys.platform != "win32" and not os.access(script, os.X_OK):
            script.chmod(script.stat().st_mode | 0o111)
        return str(script)

    def _get(self, url: str):
        request_exception = getattr(self.requests, "RequestException", Exception)
        try:
            response = self.requests.get(url, timeout=self.timeout_seconds)
            response.raise_for_status()
        except request_exception as exc:
            raise WrapperUpgradeError(
                f"Could not look up the latest {self.NAME} version from {url}: {exc}"
            ) from exc
        return response


class GradleBuildToolStrategy(_PropertiesWrapperStrategy):
    NAME = "Gradle"
    PROPERTIES_FILE = "gradle/wrapper/gradle-wrapper.properties"
    DISTRIBUTION_PATTERN = re.compile(r"gradle-(?P<version>[^/]+?)-(?:bin|all)\.zip")
    WRAPPER_FILES = (
        "gradlew",
        "gradlew.bat",
        "gradle/wrapper/gradle-wrapper.jar",
        "gradle/wrapper/gradle-wrapper.properties",
    )
    VERSIONS_URL = "https://services.gradle.org/versions"
    EXCLUDED_FLAGS = ("snapshot", "nightly", "releaseNightly", "broken")

    def lookup_latest_version(self, allow_pre_release: bool) -> VersionInfo:
        if not allow_pre_release:
            payload = self._get(f"{self.VERSIONS_URL}/current").json()
            latest = payload.get("version") if isinstance(payload, dict) else None
            if not latest:
                raise WrapperUpgradeError("Gradle version service returned no current version.")
            return VersionInfo(latest)

        payload = self._get(f"{self.VERSIONS_URL}/all").json()
        candidates = [
            entry["version"]
            for entry in payload or []
            if entry.get("version") and not any(entry.get(flag) for flag in self.EXCLUDED_FLAGS)
        ]
        return VersionInfo(_newest(candidates, self.NAME))

    def run_wrapper(self, root_project_dir: Path, version: VersionInfo):
        script = self._wrapper_script(root_project_dir, "gradlew", "gradlew.bat")
        self.command_runner.run(
            [script, "wrapper", "--gradle-version", version.version],
            cwd=root_project_dir,
        )

    def release_notes_link(self, version: str) -> str:
        return f"https://docs.gradle.org/{version}/release-notes.html"


class MavenBuildToolStrategy(_PropertiesWrapperStrategy):
    NAME = "Maven"
    PROPERTIES_FILE = ".mvn/wrapper/maven-wrapper.properties"
    DISTRIBUTION_PATTERN = re.compile(r"apache-maven-(?P<version>[^/]+?)-bin\.zip")
    WRAPPER_FILES = (
        "mvnw",
        "mvnw.cmd",
        ".mvn/wrapper/maven-wrapper.properties",
        ".mvn/wrapper/maven-wrapper.jar",
        ".mvn/wrapper/MavenWrapperDownloader.java",
    )
    METADATA_URL = "https://repo.maven.apache.org/maven2/org/apache/maven/apache-maven/maven-metadata.xml"
    PRE_RELEASE_PATTERN = re.compile(r"-(alpha|beta|rc|m)-?\d*", re.IGNORECASE)

    def lookup_latest_version(self, allow_pre_release: bool) -> VersionInfo:
        response = self._get(self.METADATA_URL)
        try:
            root = ElementTree.fromstring(response.content)
        except ElementTree.ParseError as exc:
            raise WrapperUpgradeError(f"Invalid Maven metadata from {self.METADATA_URL}: {exc}") from exc

        candidates = [
            node.text.strip()
            for node in root.iter("version")
            if node.text and node.text.strip()
        ]
        if not allow_pre_release:
            candidates = [item for item in candidates if not self.PRE_RELEASE_PATTERN.search(item)]
        return VersionInfo(_newest(candidates, self.NAME))

    def run_wrapper(self, root_project_dir: Path, version: VersionInfo):
        script = self._wrapper_script(root_project_dir, "mvnw", "mvnw.cmd")
        self.command_runner.run(
            [script, "-B", "-N", "wrapper:wrapper", f"-Dmaven={version.version}"],
            cwd=root_project_dir,
        )

    def release_notes_link(self, version: str) -> str:
        return f"https://maven.apache.org/docs/{version}/release-notes.html"


STRATEGIES: Dict[str, Type[_PropertiesWrapperStrategy]] = {
    "gradle": GradleBuildToolStrategy,
    "maven": MavenBuildToolStrategy,
}


def _newest(candidates: Sequence[str], tool_name: str) -> str:
    newest: Optional[str] = None
    for candidate in candidates:
        if newest is None or compare_versions(candidate, newest) > 0:
            newest = candidate
    if newest is None:
        raise WrapperUpgradeError(f"No {tool_name} versions found.")
    return newest


def get_strategy(
    name: str,
    command_runner,
    logger,
    requests_module=requests,
    timeout_seconds: float = 30.0,
) -> BuildToolStrategy:
    strategy_cls = STRATEGIES.get(name.lower())
    if strategy_cls is None:
        raise WrapperUpgradeError(
            actionable_error(
                "unknown_build_tool",
                tool=name,
                supported=", ".join(sorted(STRATEGIES)),
            )
        )
    return strategy_cls(
        command_runner,
        logger,
        requests_module=requests_module,
        timeout_seconds=timeout_seconds,
    )
