"""Summarize aggregated commits with the OpenAI chat API."""
from __future__ import annotations

import re
import time

from loguru import logger
from openai import (
    APIError,
    AuthenticationError,
    OpenAI,
    PermissionDeniedError,
)

from daily_recap.errors import SummarizerAuthError
from daily_recap.models import AggregationResult, CommitRecord, SummaryResult, TimeWindow

OPENAI_MAX_ATTEMPTS = 3
OPENAI_BASE_DELAY = 2
MAX_TOKENS = 500
TEMPERATURE = 0.3
MAX_FILES_PER_COMMIT = 10
MAX_MESSAGE_LINES = 6
NO_ACTIVITY_SUMMARY = "📁 No repositories with commits in this period"
REPO_HEADER = "📁"
BULLET = "•"
BULLET_PREFIX = re.compile(r"^[-*]\s+")

SYSTEM_PROMPT = (
    "You summarize a developer's git commits for a daily standup recap. "
    "Only use facts provided. Be specific: name the features, endpoints, "
    "functions or components that changed, inferring them from commit "
    "messages and file names. Never repeat a bullet: combine near-identical "
    "commits (lint fixes, formatting, 'Update X' followed by 'Fix X') into one. "
    "Group related changes into a single bullet. Within each repository order "
    "bullets by significance, most important first.\n\n"
    "Format:\n"
    "📁 repo-name (N commits):\n"
    "• specific change with details\n"
    "• another specific change"
)
USER_PROMPT_PREFIX = (
    "Analyze these {count} git commits and create a specific, detailed summary "
    "of what was done.\n\nRepository Activity:\n"
)

SECRET_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"sk-[A-Za-z0-9_-]{20,}"), "**REDACTED**"),
    (re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})"), "**REDACTED**"),
    (re.compile(r"\b[a-fA-F0-9]{32,}\b"), "**KEY**"),
    (re.compile(r"\b[A-Za-z0-9]{40,}\b"), "**KEY**"),
)


class OpenAIRetryError(RuntimeError):
    """Raised when OpenAI retries are exhausted."""


def redact_secrets(text: str) -> str:
    """Replace key-like substrings in text."""
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def format_summary(summary: str) -> str:
    """Normalize bullets and separate repository sections with blank lines."""
    lines: list[str] = []
    for raw_line in summary.strip().splitlines():
        line = raw_line.strip()
        if BULLET_PREFIX.match(line):
            stripped = BULLET_PREFIX.sub("", line)
            line = f"{BULLET} {stripped}"
        elif line.startswith(BULLET):
            line = f"{BULLET} {line[len(BULLET):].strip()}"
        if line.startswith(REPO_HEADER) and lines and lines[-1]:
            lines.append("")
        lines.append(line)
    return "\n".join(lines).strip()


def fallback_summary(result: AggregationResult, window: TimeWindow | None = None) -> str:
    """Return the deterministic summary used when the LLM is unavailable."""
    period = "over the weekend" if window is not None and window.is_extended else "yesterday"
    return (
        f"{REPO_HEADER} Completed {result.commit_count} commits across "
        f"{result.repo_count} repositories {period}"
    )


def render_commit(commit: CommitRecord) -> list[str]:
    """Render one commit as digest lines."""
    message_lines = [line for line in commit.message.splitlines() if line.strip()]
    headline = message_lines[0] if message_lines else "(no message)"
    lines = [f"- {headline} [+{commit.additions}/-{commit.deletions}]"]
    lines.extend(f"  {line}" for line in message_lines[1:MAX_MESSAGE_LINES])
    if commit.changed_files:
        files = ", ".join(commit.changed_files[:MAX_FILES_PER_COMMIT])
        extra = len(commit.changed_files) - MAX_FILES_PER_COMMIT
        if extra > 0:
            files = f"{files} (+{extra} more)"
        lines.append(f"  files: {files}")
    return lines


def render_digest(result: AggregationResult) -> str:
    """Render commits grouped by repository for the prompt."""
    sections: list[str] = []
    for repo, commits in result.by_repository().items():
        lines = [f"{REPO_HEADER} {repo} ({len(commits)} commits):"]
        for commit in commits:
            lines.extend(render_commit(commit))
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def usage_int(usage: object, field: str) -> int | None:
    """Extract an integer usage field."""
    value: object | None
    if isinstance(usage, dict):
        value = usage.get(field)
    else:
        value = getattr(usage, field, None)
    if isinstance(value, int):
        return value
    return None


class Summarizer:
    """Turns an aggregation result into summary text with retry and fallback."""

    def __init__(
        self,
        client: OpenAI,
        model: str,
        max_attempts: int = OPENAI_MAX_ATTEMPTS,
        base_delay: float = OPENAI_BASE_DELAY,
    ) -> None:
        """Create a summarizer around an OpenAI client."""
        self.client = client
        self.model = model
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    def complete(self, user_prompt: str) -> str:
        """Call the chat API with exponential backoff between attempts."""
        delay = self.base_delay
        for attempt in range(1, self.max_attempts + 1):
            start = time.perf_counter()
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    max_tokens=MAX_TOKENS,
                    temperature=TEMPERATURE,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": user_prompt},
                    ],
                )
            except (AuthenticationError, PermissionDeniedError) as exc:
                raise SummarizerAuthError(str(exc)) from exc
            except APIError as exc:
                logger.warning(
                    "OpenAI call failed",
                    model=self.model,
                    attempt=attempt,
                    error=redact_secrets(str(exc))[:100],
                )
            else:
                usage_fields = {
                    "prompt_tokens": usage_int(response.usage, "prompt_tokens"),
                    "completion_tokens": usage_int(response.usage, "completion_tokens"),
                    "total_tokens": usage_int(response.usage, "total_tokens"),
                }
                usage_fields = {
                    key: value for key, value in usage_fields.items() if value is not None
                }
                logger.info(
                    "LLM call completed",
                    model=self.model,
                    elapsed=f"{time.perf_counter() - start:.2f}s",
                    **usage_fields,
                )
                content = response.choices[0].message.content if response.choices else None
                if content and content.strip():
                    return content.strip()
                logger.warning("OpenAI returned no content", model=self.model, attempt=attempt)
            if attempt < self.max_attempts:
                logger.info("Retrying OpenAI call", wait_seconds=delay)
                time.sleep(delay)
                delay *= 2
        raise OpenAIRetryError

    def summarize(
        self,
        result: AggregationResult,
        window: TimeWindow | None = None,
    ) -> SummaryResult:
        """Summarize commits; never raises for API failures."""
        if result.commit_count == 0:
            logger.info("No commits to summarize")
            return SummaryResult(text=NO_ACTIVITY_SUMMARY, is_fallback=False)
        user_prompt = (
            USER_PROMPT_PREFIX.format(count=result.commit_count) + render_digest(result)
        )
        try:
            text = format_summary(self.complete(user_prompt))
        except SummarizerAuthError:
            logger.error("OpenAI authentication failed, check OPENAI_API_KEY")
        except OpenAIRetryError:
            logger.warning("OpenAI retries exhausted", attempts=self.max_attempts)
        else:
            return SummaryResult(text=redact_secrets(text), is_fallback=False)
        logger.warning("Using fallback summary")
        return SummaryResult(
            text=redact_secrets(fallback_summary(result, window)),
            is_fallback=True,
        )
