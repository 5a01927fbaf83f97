"""Run report generation service."""

import json
import os
import tempfile
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from wrapperupgrade.models import RunSettings, UpgradeOutcome


class ReportService:
    """Collects per-target outcomes and writes the run report JSON."""

    def __init__(self, report_file: Optional[str], logger):
        self.report_file = report_file
        self.logger = logger
        self._lock = threading.Lock()
        self.report: Dict[str, Any] = {
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "settings": {},
            "targets": [],
        }

    def start_run(self, settings: RunSettings):
        public_settings = asdict(settings)
        public_settings.pop("github_token", None)
        public_settings["authenticated"] = bool(settings.github_token)
        with self._lock:
            self.report["status"] = "running"
            self.report["started_at"] = self._now()
            self.report["settings"] = public_settings
        self.write()

    def add_outcome(self, outcome: UpgradeOutcome):
        entry: Dict[str, Any] = {
            "target": outcome.target,
            "status": outcome.status,
            "message": outcome.message,
            "error": outcome.error,
            "closed_pull_requests": list(outcome.closed),
            "pull_request": None,
            "branch": None,
            "used_version": None,
            "latest_version": None,
        }
        if outcome.decision:
            entry["branch"] = outcome.decision.pr_branch
            entry["used_version"] = outcome.decision.used_version.version
            entry["latest_version"] = outcome.decision.latest_version.version
        if outcome.pull_request:
            entry["pull_request"] = {
                "number": outcome.pull_request.number,
                "url": outcome.pull_request.html_url,
            }
        with self._lock:
            self.report["targets"].append(entry)
        self.write()

    def finalize(self, status: str):
        with self._lock:
            self.report["status"] = status
            self.report["finished_at"] = self._now()
            if self.report.get("started_at"):
                started_at = datetime.fromisoformat(self.report["started_at"])
                finished_at = datetime.fromisoformat(self.report["finished_at"])
                self.report["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.write()

    def write(self):
        if not self.report_file:
            return

        os.makedirs(os.path.dirname(self.report_file) or ".", exist_ok=True)

        with self._lock:
            fd, temp_path = tempfile.mkstemp(
                prefix="run-report-",
                suffix=".json",
                dir=os.path.dirname(self.report_file) or ".",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                    json.dump(self.report, file_obj, indent=2, sort_keys=True)
                    file_obj.write("\n")
                os.replace(temp_path, self.report_file)
            except OSError as exc:
                self.logger.warning("Could not write report file '%s': %s", self.report_file, exc)
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
