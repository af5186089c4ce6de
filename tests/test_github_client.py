"""Tests for repository enumeration and commit collection."""
from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
import requests

from daily_recap.errors import AuthenticationFailedError
from daily_recap.github import GitHubClient, is_attributed
from daily_recap.models import RepositoryRef, TimeWindow

API = "https://api.github.com"
AUTHOR = "octodev"
WINDOW = TimeWindow(
    start=datetime(2026, 10, 13, 7, 0, 0, tzinfo=UTC),
    end=datetime(2026, 10, 14, 6, 59, 59, tzinfo=UTC),
    is_extended=False,
    period_label="October 13, 2026",
)

Handler = Callable[[str, dict[str, object]], requests.Response]


def _response(
    status: int = 200,
    payload: object = None,
    headers: dict[str, str] | None = None,
    text: str | None = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    body = text if text is not None else json.dumps(payload)
    response._content = body.encode()
    response.headers.update(headers or {})
    return response


def _commit(
    sha: str,
    author: str | None = AUTHOR,
    committer: str | None = "web-flow",
    message: str = "feat: change",
) -> dict[str, object]:
    return {
        "sha": sha,
        "author": {"login": author} if author else None,
        "committer": {"login": committer} if committer else None,
        "commit": {
            "message": message,
            "author": {"name": "Someone", "email": "someone@example.com"},
            "committer": {"name": "GitHub", "email": "noreply@github.com"},
        },
    }


def _detail(sha: str) -> dict[str, object]:
    return {
        "sha": sha,
        "commit": {"message": f"commit {sha}"},
        "files": [{"filename": f"src/{sha}.py"}],
        "stats": {"additions": 3, "deletions": 1},
    }


class FakeSession:
    """Routes GET calls to a handler and records them."""

    def __init__(self, handler: Handler) -> None:
        self.headers: dict[str, str] = {}
        self.handler = handler
        self.calls: list[tuple[str, dict[str, object]]] = []

    def get(self, url: str, params=None, timeout=None) -> requests.Response:
        path = url.removeprefix(API)
        call_params = dict(params or {})
        self.calls.append((path, call_params))
        return self.handler(path, call_params)


def _client(handler: Handler, **kwargs: object) -> tuple[GitHubClient, FakeSession]:
    session = FakeSession(handler)
    client = GitHubClient("token", AUTHOR, session=session, **kwargs)
    return client, session


def _repos(*names: str) -> list[dict[str, object]]:
    return [{"full_name": name} for name in names]


class TestPagination:
    def test_stops_on_partial_page(self):
        pages = {1: _repos("me/a", "me/b"), 2: _repos("me/c")}

        def handler(path, params):
            return _response(payload=pages.get(params["page"], []))

        client, session = _client(handler, page_size=2)
        items = list(client.paginate("/user/repos", context="repos"))
        assert [item["full_name"] for item in items] == ["me/a", "me/b", "me/c"]
        assert len(session.calls) == 2

    def test_stops_on_empty_page(self):
        pages = {1: _repos("me/a", "me/b")}

        def handler(path, params):
            return _response(payload=pages.get(params["page"], []))

        client, session = _client(handler, page_size=2)
        assert len(list(client.paginate("/user/repos"))) == 2
        assert len(session.calls) == 2

    def test_failed_page_ends_pagination(self):
        def handler(path, params):
            if params["page"] == 1:
                return _response(payload=_repos("me/a", "me/b"))
            return _response(status=502, payload={"message": "Bad gateway"})

        client, session = _client(handler, page_size=2)
        assert len(list(client.paginate("/user/repos"))) == 2
        assert len(session.calls) == 2

    def test_malformed_page_is_not_retried(self):
        client, session = _client(lambda path, params: _response(text="<html>oops"))
        assert list(client.paginate("/user/repos")) == []
        assert len(session.calls) == 1

    def test_sends_page_size(self):
        client, session = _client(lambda path, params: _response(payload=[]), page_size=50)
        list(client.paginate("/user/repos", {"type": "all"}))
        assert session.calls[0][1] == {"type": "all", "per_page": 50, "page": 1}


class TestAuthentication:
    def test_returns_login(self):
        client, _ = _client(lambda path, params: _response(payload={"login": "octodev"}))
        assert client.authenticated_login() == "octodev"

    def test_unauthorized_token_is_fatal(self):
        client, _ = _client(
            lambda path, params: _response(status=401, payload={"message": "Bad credentials"}),
        )
        with pytest.raises(AuthenticationFailedError):
            client.authenticated_login()

    def test_missing_login_is_fatal(self):
        client, _ = _client(lambda path, params: _response(payload={"login": None}))
        with pytest.raises(AuthenticationFailedError):
            client.authenticated_login()

    def test_sets_bearer_header(self):
        _, session = _client(lambda path, params: _response(payload=[]))
        assert session.headers["Authorization"] == "Bearer token"


class TestListRepositories:
    def test_dedupes_personal_and_org_repositories(self):
        routes = {
            "/user/repos": _repos("me/app", "acme/api"),
            "/user/orgs": [{"login": "acme"}],
            "/orgs/acme/repos": _repos("acme/api", "acme/web"),
        }

        client, _ = _client(lambda path, params: _response(payload=routes[path]))
        repos = client.list_repositories()
        assert repos == [
            RepositoryRef(full_name="me/app"),
            RepositoryRef(full_name="acme/api"),
            RepositoryRef(full_name="acme/web"),
        ]

    def test_org_listing_failure_keeps_personal_repositories(self):
        def handler(path, params):
            if path == "/user/repos":
                return _response(payload=_repos("me/app"))
            return _response(status=403, payload={"message": "Forbidden"})

        client, _ = _client(handler)
        assert client.list_repositories() == [RepositoryRef(full_name="me/app")]


class TestAuthorAttribution:
    def test_author_match_is_included(self):
        assert is_attributed(_commit("1", author=AUTHOR, committer="web-flow"), AUTHOR)

    def test_committer_match_is_included(self):
        assert is_attributed(_commit("1", author="teammate", committer=AUTHOR), AUTHOR)

    def test_neither_match_is_excluded(self):
        assert not is_attributed(_commit("1", author="teammate", committer="web-flow"), AUTHOR)

    def test_match_is_case_insensitive(self):
        assert is_attributed(_commit("1", author="OctoDev", committer=None), AUTHOR)

    def test_noreply_email_matches_login(self):
        item = _commit("1", author=None, committer=None)
        item["commit"]["author"]["email"] = "12345+octodev@users.noreply.github.com"
        assert is_attributed(item, AUTHOR)


class TestFetchRepositoryCommits:
    def test_same_commit_on_two_branches_is_counted_once(self):
        branch_commits = {
            "main": [_commit("sha1")],
            "feature": [_commit("sha1"), _commit("sha2")],
        }

        def handler(path, params):
            if path == "/repos/me/app/branches":
                return _response(payload=[{"name": "main"}, {"name": "feature"}])
            if path == "/repos/me/app/commits":
                return _response(payload=branch_commits[params["sha"]])
            sha = path.rsplit("/", 1)[-1]
            return _response(payload=_detail(sha))

        client, session = _client(handler)
        records = client.fetch_repository_commits(RepositoryRef(full_name="me/app"), WINDOW)
        assert [record.sha for record in records] == ["sha1", "sha2"]
        detail_calls = [path for path, _ in session.calls if path.startswith("/repos/me/app/commits/")]
        assert detail_calls == ["/repos/me/app/commits/sha1", "/repos/me/app/commits/sha2"]

    def test_commit_queries_carry_window_and_identity_filters(self):
        def handler(path, params):
            if path.endswith("/branches"):
                return _response(payload=[{"name": "main"}])
            return _response(payload=[])

        client, session = _client(handler)
        client.fetch_repository_commits(RepositoryRef(full_name="me/app"), WINDOW)
        commit_params = [params for path, params in session.calls if path.endswith("/commits")]
        assert len(commit_params) == 2
        assert commit_params[0]["author"] == AUTHOR
        assert commit_params[1]["committer"] == AUTHOR
        for params in commit_params:
            assert params["since"] == "2026-10-13T07:00:00Z"
            assert params["until"] == "2026-10-14T06:59:59Z"
            assert params["sha"] == "main"

    def test_committer_query_can_be_disabled(self):
        def handler(path, params):
            if path.endswith("/branches"):
                return _response(payload=[{"name": "main"}])
            return _response(payload=[])

        client, session = _client(handler, match_committer=False)
        client.fetch_repository_commits(RepositoryRef(full_name="me/app"), WINDOW)
        commit_params = [params for path, params in session.calls if path.endswith("/commits")]
        assert len(commit_params) == 1
        assert "committer" not in commit_params[0]

    def test_branch_failure_falls_back_to_default_history(self):
        def handler(path, params):
            if path.endswith("/branches"):
                return _response(status=404, payload={"message": "Not Found"})
            if path.endswith("/commits"):
                return _response(payload=[_commit("sha1")])
            return _response(payload=_detail("sha1"))

        client, session = _client(handler)
        records = client.fetch_repository_commits(RepositoryRef(full_name="me/app"), WINDOW)
        assert [record.sha for record in records] == ["sha1"]
        commit_params = [params for path, params in session.calls if path.endswith("/commits")]
        assert all("sha" not in params for params in commit_params)

    def test_failed_detail_drops_only_that_commit(self):
        def handler(path, params):
            if path.endswith("/branches"):
                return _response(payload=[{"name": "main"}])
            if path.endswith("/commits"):
                return _response(payload=[_commit("sha1"), _commit("sha2")])
            if path.endswith("/sha2"):
                return _response(status=500, payload={"message": "Server Error"})
            return _response(payload=_detail("sha1"))

        client, _ = _client(handler)
        records = client.fetch_repository_commits(RepositoryRef(full_name="me/app"), WINDOW)
        assert [record.sha for record in records] == ["sha1"]

    def test_unattributed_commits_are_excluded(self):
        def handler(path, params):
            if path.endswith("/branches"):
                return _response(payload=[{"name": "main"}])
            if path.endswith("/commits"):
                return _response(
                    payload=[
                        _commit("mine", author=AUTHOR),
                        _commit("merged", author="teammate", committer=AUTHOR),
                        _commit("theirs", author="teammate", committer="web-flow"),
                    ],
                )
            return _response(payload=_detail(path.rsplit("/", 1)[-1]))

        client, _ = _client(handler)
        records = client.fetch_repository_commits(RepositoryRef(full_name="me/app"), WINDOW)
        assert [record.sha for record in records] == ["mine", "merged"]


class TestAggregate:
    def test_commit_count_is_deduplicated_cardinality(self):
        branch_commits = {
            "main": [_commit("sha1"), _commit("sha2")],
            "develop": [_commit("sha1"), _commit("sha2"), _commit("sha3")],
        }

        def handler(path, params):
            if path == "/user/repos":
                return _response(payload=_repos("me/app", "me/empty"))
            if path == "/user/orgs":
                return _response(payload=[])
            if path == "/repos/me/app/branches":
                return _response(payload=[{"name": "main"}, {"name": "develop"}])
            if path == "/repos/me/empty/branches":
                return _response(payload=[{"name": "main"}])
            if path == "/repos/me/app/commits":
                return _response(payload=branch_commits[params["sha"]])
            if path == "/repos/me/empty/commits":
                return _response(payload=[])
            return _response(payload=_detail(path.rsplit("/", 1)[-1]))

        client, _ = _client(handler)
        result = client.aggregate(WINDOW)
        assert result.commit_count == 3
        assert result.repo_count == 1
        assert [commit.sha for commit in result.commits] == ["sha1", "sha2", "sha3"]


class TestRateLimiting:
    def test_waits_until_reset_then_retries(self):
        responses = [
            _response(
                status=403,
                payload={"message": "API rate limit exceeded"},
                headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1005"},
            ),
            _response(payload={"login": AUTHOR}),
        ]
        client, session = _client(lambda path, params: responses.pop(0))
        with (
            patch("daily_recap.github.time.time", return_value=1000),
            patch("daily_recap.github.time.sleep") as mock_sleep,
        ):
            assert client.authenticated_login() == AUTHOR
        mock_sleep.assert_called_once_with(6)
        assert len(session.calls) == 2

    def test_missing_reset_uses_fixed_backoff(self):
        responses = [
            _response(status=429, payload={"message": "Too many requests"}),
            _response(status=429, payload={"message": "Too many requests"}),
            _response(payload=[]),
        ]
        client, _ = _client(lambda path, params: responses.pop(0))
        with patch("daily_recap.github.time.sleep") as mock_sleep:
            assert list(client.paginate("/user/repos")) == []
        assert [call.args[0] for call in mock_sleep.call_args_list] == [2, 4]

    def test_long_wait_abandons_step_with_partial_data(self):
        def handler(path, params):
            if params["page"] == 1:
                return _response(payload=_repos("me/a", "me/b"))
            return _response(
                status=403,
                payload={"message": "API rate limit exceeded"},
                headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "99999"},
            )

        client, _ = _client(handler, page_size=2, max_rate_limit_wait=60)
        with (
            patch("daily_recap.github.time.time", return_value=1000),
            patch("daily_recap.github.time.sleep") as mock_sleep,
        ):
            items = list(client.paginate("/user/repos"))
        assert [item["full_name"] for item in items] == ["me/a", "me/b"]
        mock_sleep.assert_not_called()

    def test_retry_after_wins_over_distant_reset(self):
        responses = [
            _response(
                status=403,
                payload={"message": "You have exceeded a secondary rate limit"},
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Reset": "4000",
                    "X-RateLimit-Remaining": "4000",
                },
            ),
            _response(payload={"login": AUTHOR}),
        ]
        client, session = _client(lambda path, params: responses.pop(0))
        with (
            patch("daily_recap.github.time.time", return_value=1000),
            patch("daily_recap.github.time.sleep") as mock_sleep,
        ):
            assert client.authenticated_login() == AUTHOR
        mock_sleep.assert_called_once_with(60)
        assert len(session.calls) == 2

    def test_forbidden_without_quota_signal_is_not_retried(self):
        client, session = _client(
            lambda path, params: _response(status=403, payload={"message": "Resource not accessible"}),
        )
        with patch("daily_recap.github.time.sleep") as mock_sleep:
            result = client.request("/repos/me/app/branches")
        assert result.ok is False
        assert result.status_code == 403
        assert len(session.calls) == 1
        mock_sleep.assert_not_called()
