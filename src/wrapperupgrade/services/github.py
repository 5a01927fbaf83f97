"""GitHub REST API gateway for branches and pull requests."""

import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import quote, urlparse

import requests

from wrapperupgrade.errors import GitHubError
from wrapperupgrade.errors_catalog import actionable_error
from wrapperupgrade.models import GitHubUser, PullRequestRecord

_SCP_LIKE = re.compile(r"^[\w.-]+@[\w.-]+:(?P<path>.+)$")


def repository_full_name(repo: str) -> str:
    """Normalize a clone URL, SSH location or shorthand to ``owner/name``."""
    match = _SCP_LIKE.match(repo)
    if match:
        path = match.group("path")
    elif urlparse(repo).scheme:
        path = urlparse(repo).path
    else:
        path = repo

    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        raise GitHubError("GET", repo, "Repository must be given as 'owner/name' or a clone URL.")
    return "/".join(parts[-2:])


class PullRequestGateway:
    """Wraps the GitHub calls needed to reconcile wrapper upgrade pull requests."""

    AUTH_STATUS_CODES = {401, 403}

    def __init__(
        self,
        logger,
        api_url: str = "https://api.github.com",
        token: Optional[str] = None,
        timeout_seconds: float = 30.0,
        requests_module=requests,
    ):
        self.logger = logger
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds
        self.requests = requests_module

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(
        self,
        method: str,
        url: str,
        expected: Sequence[int] = (200,),
        repo: Optional[str] = None,
        **kwargs,
    ):
        if not url.startswith("http"):
            url = f"{self.api_url}{url}"
        request_exception = getattr(self.requests, "RequestException", Exception)
        self.logger.debug("GitHub API %s %s", method, url)
        try:
            response = self.requests.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.timeout_seconds,
                **kwargs,
            )
        except request_exception as exc:
            raise GitHubError(method, url, str(exc)) from exc

        if response.status_code in expected:
            return response

        message = self._response_message(response)
        if repo and response.status_code in self.AUTH_STATUS_CODES:
            message = f"{message}. {actionable_error('github_auth_failed', repo=repo, status=str(response.status_code))}"
        raise GitHubError(method, url, message, status_code=response.status_code)

    def _response_message(self, response) -> str:
        try:
            payload = response.json()
            if isinstance(payload, dict):
                message = payload.get("message")
                if isinstance(message, str) and message:
                    return message
        except ValueError:
            pass
        return (getattr(response, "text", "") or "").strip() or "no details"

    def get_repository(self, repo: str) -> Dict[str, Any]:
        full_name = repository_full_name(repo)
        response = self._request("GET", f"/repos/{full_name}", repo=full_name)
        return response.json()

    def branch_exists(self, repo: str, branch: str) -> bool:
        full_name = repository_full_name(repo)
        response = self._request(
            "GET",
            f"/repos/{full_name}/branches/{quote(branch, safe='')}",
            expected=(200, 404),
            repo=full_name,
        )
        return response.status_code == 200

    def list_pull_requests(self, repo: str, branch_prefix: str) -> Set[PullRequestRecord]:
        """All pull requests, open or closed, whose head branch starts with ``branch_prefix``."""
        full_name = repository_full_name(repo)
        url: Optional[str] = f"/repos/{full_name}/pulls"
        params: Optional[Dict[str, Any]] = {"state": "all", "per_page": 100}
        records: Set[PullRequestRecord] = set()

        while url:
            response = self._request("GET", url, params=params, repo=full_name)
            for payload in response.json():
                record = self._to_record(payload)
                if record.head_ref.startswith(branch_prefix):
                    records.add(record)
            links = getattr(response, "links", None) or {}
            url = links.get("next", {}).get("url")
            # the next link already carries the query string
            params = None

        return records

    def create_pull_request(
        self,
        repo: str,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> PullRequestRecord:
        full_name = repository_full_name(repo)
        response = self._request(
            "POST",
            f"/repos/{full_name}/pulls",
            expected=(201,),
            repo=full_name,
            json={"title": title, "head": head, "base": base, "body": body},
        )
        return self._to_record(response.json())

    def close_pull_request(self, repo: str, record: PullRequestRecord, dry_run: bool = False) -> bool:
        if dry_run:
            return False

        full_name = repository_full_name(repo)
        self._request(
            "PATCH",
            f"/repos/{full_name}/pulls/{record.number}",
            repo=full_name,
            json={"state": "closed"},
        )
        return True

    def add_labels(self, repo: str, record: PullRequestRecord, labels: Sequence[str]):
        if not labels:
            return

        full_name = repository_full_name(repo)
        try:
            self._request(
                "POST",
                f"/repos/{full_name}/issues/{record.number}/labels",
                repo=full_name,
                json={"labels": list(labels)},
            )
        except GitHubError as exc:
            self.logger.warning("Error adding labels: %s", exc)

    def request_reviewers(self, repo: str, record: PullRequestRecord, reviewers: Sequence[str]):
        if not reviewers:
            return

        users = self.resolve_users(reviewers)
        if not users:
            return
        full_name = repository_full_name(repo)
        try:
            self._request(
                "POST",
                f"/repos/{full_name}/pulls/{record.number}/requested_reviewers",
                expected=(200, 201),
                repo=full_name,
                json={"reviewers": [user.login for user in users]},
            )
        except GitHubError as exc:
            self.logger.warning("Error requesting reviewers: %s", exc)

    def add_assignees(self, repo: str, record: PullRequestRecord, assignees: Sequence[str]):
        if not assignees:
            return

        users = self.resolve_users(assignees)
        if not users:
            return
        full_name = repository_full_name(repo)
        try:
            self._request(
                "POST",
                f"/repos/{full_name}/issues/{record.number}/assignees",
                expected=(200, 201),
                repo=full_name,
                json={"assignees": [user.login for user in users]},
            )
        except GitHubError as exc:
            self.logger.warning("Error adding assignees: %s", exc)

    def get_user(self, login: str) -> GitHubUser:
        response = self._request("GET", f"/users/{quote(login, safe='')}")
        payload = response.json()
        return GitHubUser(login=payload.get("login", login), id=payload.get("id"))

    def resolve_users(self, logins: Iterable[str]) -> List[GitHubUser]:
        users: List[GitHubUser] = []
        for login in logins:
            try:
                users.append(self.get_user(login))
            except GitHubError as exc:
                self.logger.warning("Error fetching GitHub user '%s': %s", login, exc)
        return users

    @staticmethod
    def _to_record(payload: Dict[str, Any]) -> PullRequestRecord:
        return PullRequestRecord(
            number=payload["number"],
            head_ref=(payload.get("head") or {}).get("ref", ""),
            state=payload.get("state", "open"),
            html_url=payload.get("html_url", ""),
            labels=tuple(label.get("name", "") for label in payload.get("labels") or []),
            reviewers=tuple(
                user.get("login", "") for user in payload.get("requested_reviewers") or []
            ),
            assignees=tuple(user.get("login", "") for user in payload.get("assignees") or []),
        )
