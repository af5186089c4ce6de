"""Enumerate repositories and collect commits from the GitHub REST API."""
from __future__ import annotations

import time
from collections import Counter
from collections.abc import Iterator

import requests
from loguru import logger

from daily_recap.errors import AuthenticationFailedError, RateLimitAbandonedError
from daily_recap.models import (
    AggregationResult,
    ApiResponse,
    CommitRecord,
    JSONDict,
    RepositoryRef,
    TimeWindow,
    ensure_dict,
    ensure_str,
)
from daily_recap.normalize import normalize_commit
from daily_recap.settings import (
    DEFAULT_GITHUB_API_URL,
    DEFAULT_MAX_RATE_LIMIT_WAIT,
    DEFAULT_PAGE_SIZE,
    Settings,
)

HTTP_ERROR_THRESHOLD = 400
RATE_LIMIT_STATUSES = (403, 429)
REQUEST_MAX_ATTEMPTS = 3
RATE_LIMIT_BASE_DELAY = 2
REQUEST_TIMEOUT = 30
GITHUB_API_VERSION = "2022-11-28"


def parse_int_header(value: str | None) -> int | None:
    """Parse an integer header value."""
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def is_rate_limited(response: requests.Response) -> bool:
    """Return True when the response signals quota exhaustion."""
    if response.status_code not in RATE_LIMIT_STATUSES:
        return False
    if response.status_code == 429:
        return True
    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True
    return "rate limit" in response.text.lower()


def identity_matches(identity: object, account: str) -> bool:
    """Match a login, name or email against the tracked account."""
    if not isinstance(identity, str) or not identity:
        return False
    value = identity.casefold()
    if value == account:
        return True
    if "@" in value:
        # noreply addresses look like 12345+login@users.noreply.github.com
        local_part = value.split("@", 1)[0]
        return local_part.split("+")[-1] == account
    return False


def _identities(item: JSONDict, role: str) -> list[object]:
    user = item.get(role)
    git_commit = item.get("commit")
    person = git_commit.get(role) if isinstance(git_commit, dict) else None
    values: list[object] = []
    if isinstance(user, dict):
        values.append(user.get("login"))
    if isinstance(person, dict):
        values.extend([person.get("name"), person.get("email")])
    return values


def is_attributed(item: JSONDict, account: str) -> bool:
    """Return True when the author OR the committer is the tracked account."""
    target = account.casefold()
    return any(
        identity_matches(value, target)
        for role in ("author", "committer")
        for value in _identities(item, role)
    )


class GitHubClient:
    """Sequential GitHub REST client for one author's daily activity."""

    def __init__(
        self,
        token: str,
        author: str,
        *,
        api_url: str = DEFAULT_GITHUB_API_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_rate_limit_wait: int = DEFAULT_MAX_RATE_LIMIT_WAIT,
        match_committer: bool = True,
        session: requests.Session | None = None,
    ) -> None:
        """Create a client bound to a token and tracked author."""
        self.author = author
        self.api_url = api_url.rstrip("/")
        self.page_size = page_size
        self.max_rate_limit_wait = max_rate_limit_wait
        self.match_committer = match_committer
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
            },
        )
        self.api_calls: Counter[str] = Counter()

    @classmethod
    def from_settings(cls, settings: Settings) -> GitHubClient:
        """Build a client from environment settings."""
        return cls(
            settings.hosting_token,
            settings.author_account,
            api_url=settings.github_api_url,
            page_size=settings.recap_page_size,
            max_rate_limit_wait=settings.recap_max_rate_limit_wait,
            match_committer=settings.recap_match_committer,
        )

    def rate_limit_wait(self, response: requests.Response, fallback_delay: int) -> int:
        """Return seconds to wait before retrying a rate-limited request.

        Uses ``Retry-After`` when present, then ``X-RateLimit-Reset``, then the
        fixed backoff delay. Raises RateLimitAbandonedError when the wait
        exceeds the configured cap.
        """
        reset = parse_int_header(response.headers.get("X-RateLimit-Reset"))
        retry_after = parse_int_header(response.headers.get("Retry-After"))
        if retry_after is not None:
            wait = max(retry_after, 1)
        elif reset is not None:
            wait = max(reset - int(time.time()) + 1, 1)
        else:
            wait = fallback_delay
        if wait > self.max_rate_limit_wait:
            raise RateLimitAbandonedError(wait, self.max_rate_limit_wait)
        return wait

    def request(
        self,
        path: str,
        params: dict[str, object] | None = None,
        context: str = "",
    ) -> ApiResponse:
        """GET a path and return a typed result; failures never raise."""
        url = path if path.startswith("http") else f"{self.api_url}{path}"
        delay = RATE_LIMIT_BASE_DELAY
        status_code = 0
        for attempt in range(1, REQUEST_MAX_ATTEMPTS + 1):
            self.api_calls[context or path] += 1
            try:
                response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT)
            except requests.RequestException as exc:
                logger.warning("GitHub request failed", context=context, error=str(exc))
                return ApiResponse(ok=False, status_code=0)
            status_code = response.status_code
            if is_rate_limited(response):
                if attempt == REQUEST_MAX_ATTEMPTS:
                    break
                wait = self.rate_limit_wait(response, delay)
                logger.warning(
                    "Rate limited by GitHub, retrying",
                    context=context,
                    attempt=attempt,
                    wait_seconds=wait,
                )
                time.sleep(wait)
                delay *= 2
                continue
            if status_code >= HTTP_ERROR_THRESHOLD:
                logger.debug("GitHub request returned error", context=context, status=status_code)
                return ApiResponse(ok=False, status_code=status_code)
            try:
                payload = response.json()
            except ValueError:
                logger.warning("Malformed GitHub response", context=context, status=status_code)
                return ApiResponse(ok=False, status_code=status_code)
            return ApiResponse(ok=True, status_code=status_code, payload=payload)
        logger.warning("GitHub rate limit retries exhausted", context=context)
        return ApiResponse(ok=False, status_code=status_code)

    def paginate(
        self,
        path: str,
        params: dict[str, object] | None = None,
        context: str = "",
    ) -> Iterator[object]:
        """Yield items page by page until a partial, empty or failed page."""
        page = 1
        while True:
            page_params = {**(params or {}), "per_page": self.page_size, "page": page}
            try:
                result = self.request(path, page_params, context)
            except RateLimitAbandonedError as exc:
                logger.warning("Abandoning pagination", context=context, reason=str(exc))
                return
            if not result.ok or not isinstance(result.payload, list):
                if not result.ok:
                    logger.debug("Page fetch failed, stopping", context=context, page=page)
                return
            yield from result.payload
            if len(result.payload) < self.page_size:
                return
            page += 1

    def authenticated_login(self) -> str:
        """Return the login behind the token or raise."""
        try:
            result = self.request("/user", context="user")
        except RateLimitAbandonedError as exc:
            raise AuthenticationFailedError(str(exc)) from exc
        if not result.ok or not isinstance(result.payload, dict):
            raise AuthenticationFailedError(f"GET /user returned {result.status_code}")
        login = result.payload.get("login")
        if not isinstance(login, str) or not login:
            raise AuthenticationFailedError("response did not include a login")
        return login

    def list_repositories(self) -> list[RepositoryRef]:
        """Return personal, collaborator and organization repositories."""
        seen: dict[str, RepositoryRef] = {}

        def add(item: object) -> None:
            if isinstance(item, dict):
                full_name = item.get("full_name")
                if isinstance(full_name, str) and full_name:
                    seen.setdefault(full_name, RepositoryRef(full_name=full_name))

        for item in self.paginate("/user/repos", {"type": "all"}, "repos"):
            add(item)
        logger.info("Listed user repositories", count=len(seen))

        orgs = [
            item["login"]
            for item in self.paginate("/user/orgs", context="orgs")
            if isinstance(item, dict) and isinstance(item.get("login"), str)
        ]
        for org in orgs:
            before = len(seen)
            for item in self.paginate(f"/orgs/{org}/repos", context="org_repos"):
                add(item)
            logger.info("Listed organization repositories", org=org, new=len(seen) - before)
        return list(seen.values())

    def list_branches(self, repo: str) -> list[str]:
        """Return branch names for a repository."""
        names: list[str] = []
        for item in self.paginate(f"/repos/{repo}/branches", context="branches"):
            if isinstance(item, dict):
                name = item.get("name")
                if isinstance(name, str) and name:
                    names.append(name)
        return names

    def list_commits(
        self,
        repo: str,
        window: TimeWindow,
        branch: str | None = None,
    ) -> list[JSONDict]:
        """Return commits in the window attributed to the tracked author."""
        base: dict[str, object] = {"since": window.since_iso, "until": window.until_iso}
        if branch:
            base["sha"] = branch
        filters = [("author", self.author)]
        if self.match_committer:
            filters.append(("committer", self.author))
        merged: dict[str, JSONDict] = {}
        for key, value in filters:
            params = {**base, key: value}
            for item in self.paginate(f"/repos/{repo}/commits", params, "commits"):
                if not isinstance(item, dict):
                    continue
                sha = item.get("sha")
                if isinstance(sha, str) and sha and is_attributed(item, self.author):
                    merged.setdefault(sha, item)
        return list(merged.values())

    def fetch_commit_detail(
        self,
        repo: str,
        sha: str,
        summary: JSONDict,
    ) -> CommitRecord | None:
        """Fetch files and stats for one commit; None drops the commit."""
        try:
            result = self.request(f"/repos/{repo}/commits/{sha}", context="commit_detail")
        except RateLimitAbandonedError as exc:
            logger.warning("Skipping commit detail", repo=repo, sha=sha[:7], reason=str(exc))
            return None
        if not result.ok or not isinstance(result.payload, dict):
            logger.warning(
                "Dropping commit without details",
                repo=repo,
                sha=sha[:7],
                status=result.status_code,
            )
            return None
        try:
            return normalize_commit(repo, summary, ensure_dict(result.payload, "commit_detail"))
        except (TypeError, ValueError) as exc:
            logger.warning("Dropping malformed commit", repo=repo, sha=sha[:7], error=str(exc))
            return None

    def fetch_repository_commits(
        self,
        repo: RepositoryRef,
        window: TimeWindow,
    ) -> list[CommitRecord]:
        """Collect commits across every branch of a repository."""
        branches = self.list_branches(repo.full_name)
        targets: list[str | None] = list(branches)
        if not targets:
            logger.debug("No branches listed, using default history", repo=repo.full_name)
            targets = [None]
        accumulator: dict[str, JSONDict] = {}
        for branch in targets:
            for item in self.list_commits(repo.full_name, window, branch):
                accumulator.setdefault(ensure_str(item.get("sha"), "commit.sha"), item)
        records: list[CommitRecord] = []
        for sha, summary in accumulator.items():
            record = self.fetch_commit_detail(repo.full_name, sha, summary)
            if record is not None:
                records.append(record)
        if records:
            logger.info(
                "Collected commits",
                repo=repo.full_name,
                branches=len(branches),
                count=len(records),
            )
        return records

    def aggregate(self, window: TimeWindow) -> AggregationResult:
        """Collect deduplicated commits across all accessible repositories."""
        repositories = self.list_repositories()
        logger.info("Checking repositories", count=len(repositories))
        seen: set[str] = set()
        commits: list[CommitRecord] = []
        for repo in repositories:
            for record in self.fetch_repository_commits(repo, window):
                if record.sha in seen:
                    continue
                seen.add(record.sha)
                commits.append(record)
        logger.info("GitHub API usage", calls=dict(self.api_calls))
        return AggregationResult(commits=commits)
