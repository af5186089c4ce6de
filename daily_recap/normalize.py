"""Convert raw GitHub commit payloads into normalized records."""
from __future__ import annotations

import json
import re
from pathlib import Path

from loguru import logger

from daily_recap.models import (
    AggregationResult,
    CommitRecord,
    JSONDict,
    ensure_int,
    ensure_list,
    ensure_str,
)

# C0 and C1 control characters except newline; tab is handled separately.
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")


def sanitize_message(message: str) -> str:
    """Strip control characters and neutralize quotes and backslashes."""
    text = message.replace("\r\n", "\n").replace("\t", " ")
    text = CONTROL_CHARS.sub("", text)
    text = text.replace("\\", "/").replace('"', "'")
    return "\n".join(line.rstrip() for line in text.split("\n")).strip()


def extract_files(detail: JSONDict) -> list[str]:
    """Return changed filenames in API order."""
    filenames: list[str] = []
    for entry in ensure_list(detail.get("files") or [], "detail.files"):
        if not isinstance(entry, dict):
            continue
        filename = ensure_str(entry.get("filename"), "file.filename")
        if filename:
            filenames.append(filename)
    return filenames


def extract_stats(detail: JSONDict) -> tuple[int, int]:
    """Return (additions, deletions), summing per-file counts when stats are absent."""
    stats = detail.get("stats")
    if isinstance(stats, dict):
        additions = ensure_int(stats.get("additions"), "stats.additions")
        deletions = ensure_int(stats.get("deletions"), "stats.deletions")
    else:
        additions = deletions = 0
        for entry in ensure_list(detail.get("files") or [], "detail.files"):
            if isinstance(entry, dict):
                additions += ensure_int(entry.get("additions"), "file.additions")
                deletions += ensure_int(entry.get("deletions"), "file.deletions")
    return max(additions, 0), max(deletions, 0)


def commit_message(summary: JSONDict, detail: JSONDict) -> str:
    """Return the raw commit message from the listing or detail payload."""
    for source in (detail, summary):
        commit = source.get("commit")
        if isinstance(commit, dict):
            message = commit.get("message")
            if isinstance(message, str) and message:
                return message
    return ""


def normalize_commit(
    repository: str,
    summary: JSONDict,
    detail: JSONDict,
) -> CommitRecord | None:
    """Build a CommitRecord from a listing entry and its detail payload."""
    sha = ensure_str(summary.get("sha") or detail.get("sha"), "commit.sha")
    if not sha:
        return None
    additions, deletions = extract_stats(detail)
    return CommitRecord(
        repository=repository,
        sha=sha,
        message=sanitize_message(commit_message(summary, detail)),
        changed_files=extract_files(detail),
        additions=additions,
        deletions=deletions,
    )


def write_commits(result: AggregationResult, path: Path) -> None:
    """Materialize the aggregation result as JSON."""
    payload = {
        "commit_count": result.commit_count,
        "repo_count": result.repo_count,
        "commits": [commit.model_dump() for commit in result.commits],
    }
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Wrote commit data", path=str(path), count=result.commit_count)