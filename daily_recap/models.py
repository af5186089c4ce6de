"""Data models shared across the recap pipeline."""
from __future__ import annotations

from datetime import datetime
from typing import cast

from pydantic import BaseModel, ConfigDict, Field, model_validator

JSONDict = dict[str, object]
JSONList = list[object]
GITHUB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def ensure_dict(value: object, _context: str) -> JSONDict:
    """Return a dictionary value or raise."""
    if isinstance(value, dict):
        return cast("JSONDict", value)
    raise TypeError


def ensure_list(value: object, _context: str) -> JSONList:
    """Return a list value or raise."""
    if isinstance(value, list):
        return cast("JSONList", value)
    raise TypeError


def ensure_str(value: object, _context: str, default: str = "") -> str:
    """Return a string value or a default."""
    if isinstance(value, str):
        return value
    if value is None:
        return default
    raise TypeError


def ensure_int(value: object, _context: str, default: int = 0) -> int:
    """Return an integer value or a default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    return default


class TimeWindow(BaseModel):
    """UTC bounds of the reporting window."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    is_extended: bool
    period_label: str

    @model_validator(mode="after")
    def check_bounds(self) -> TimeWindow:
        """Reject empty or inverted windows."""
        if self.start >= self.end:
            msg = f"Window start {self.start} is not before end {self.end}"
            raise ValueError(msg)
        return self

    @property
    def since_iso(self) -> str:
        """Window start in GitHub query format."""
        return self.start.strftime(GITHUB_TIME_FORMAT)

    @property
    def until_iso(self) -> str:
        """Window end in GitHub query format."""
        return self.end.strftime(GITHUB_TIME_FORMAT)


class RepositoryRef(BaseModel):
    """A repository visible to the authenticated principal."""

    model_config = ConfigDict(frozen=True)

    full_name: str


class CommitRecord(BaseModel):
    """Normalized commit used for summarization."""

    repository: str
    sha: str
    message: str
    changed_files: list[str] = Field(default_factory=list)
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)


class AggregationResult(BaseModel):
    """Deduplicated commits for a run."""

    commits: list[CommitRecord] = Field(default_factory=list)

    @property
    def commit_count(self) -> int:
        """Number of distinct commits."""
        return len(self.commits)

    @property
    def repo_count(self) -> int:
        """Number of repositories with at least one commit."""
        return len({commit.repository for commit in self.commits})

    def by_repository(self) -> dict[str, list[CommitRecord]]:
        """Group commits by repository in first-seen order."""
        grouped: dict[str, list[CommitRecord]] = {}
        for commit in self.commits:
            grouped.setdefault(commit.repository, []).append(commit)
        return grouped


class SummaryResult(BaseModel):
    """Summary text handed to delivery."""

    text: str
    is_fallback: bool = False


class DeliveryOutcome(BaseModel):
    """Result of webhook delivery."""

    delivered: bool
    http_status: int
    attempts: int


class ApiResponse(BaseModel):
    """Result of a single hosting API call."""

    ok: bool
    status_code: int
    payload: object = None


class RunMetadata(BaseModel):
    """Run details rendered into the notification card."""

    title: str
    generated_at: str
    period_label: str
    commit_count: int
    repo_count: int
    run_url: str | None = None
