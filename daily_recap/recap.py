#!/usr/bin/env python3
"""Post a daily recap of one developer's commits to a Teams webhook."""
from __future__ import annotations

import argparse
import sys
import time
from datetime import date, datetime
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger
from openai import OpenAI
from pydantic import ValidationError

from daily_recap.delivery import build_run_metadata, deliver
from daily_recap.errors import (
    AuthenticationFailedError,
    EmptySummaryError,
    WindowResolutionError,
)
from daily_recap.github import GitHubClient
from daily_recap.models import AggregationResult, RunMetadata, SummaryResult
from daily_recap.normalize import write_commits
from daily_recap.settings import Settings, get_settings
from daily_recap.summarizer import Summarizer
from daily_recap.window import load_zone, resolve_window

load_dotenv()

SAMPLE_COMMITS = 3
SAMPLE_MESSAGE_CHARS = 50
REFERENCE_HOUR = 12


def log_elapsed(message: str, start: float, **fields: object) -> None:
    """Log elapsed time with additional fields."""
    elapsed = f"{time.perf_counter() - start:.2f}s"
    logger.info(
        "{message} (elapsed {elapsed})",
        message=message,
        elapsed=elapsed,
        **fields,
    )


def emit_actions_masks(settings: Settings) -> None:
    """Ask GitHub Actions to mask secrets in the job log."""
    if not settings.github_actions:
        return
    secrets = (
        settings.openai_api_key,
        settings.token_github,
        settings.github_token,
        settings.gh_token,
        settings.webhook_url,
    )
    for secret in secrets:
        if secret:
            sys.stdout.write(f"::add-mask::{secret}\n")
    sys.stdout.flush()


def reference_time(run_date: date | None, tz_name: str) -> datetime | None:
    """Return midday on ``run_date`` in the reference timezone."""
    if run_date is None:
        return None
    return datetime(
        run_date.year,
        run_date.month,
        run_date.day,
        REFERENCE_HOUR,
        tzinfo=load_zone(tz_name),
    )


def log_sample(result: AggregationResult) -> None:
    """Log the first few commits found."""
    if not result.commits:
        logger.info("No commits found for the specified time period")
        return
    for commit in result.commits[:SAMPLE_COMMITS]:
        headline = commit.message.split("\n", 1)[0][:SAMPLE_MESSAGE_CHARS]
        logger.info("Sample commit", repo=commit.repository, message=headline)
    remaining = result.commit_count - SAMPLE_COMMITS
    if remaining > 0:
        logger.info("... and {remaining} more commits", remaining=remaining)


def log_summary(metadata: RunMetadata, summary: SummaryResult) -> None:
    """Write the rendered summary to the run log."""
    logger.opt(raw=True).info(
        "{message}\n",
        message=f"{metadata.title}\n{metadata.period_label}\n\n{summary.text}",
    )


def run_recap(
    args: argparse.Namespace,
    settings: Settings,
    client: OpenAI,
    github: GitHubClient | None = None,
) -> int:
    """Execute window, fetch, summarize and deliver in order."""
    window = resolve_window(
        settings.recap_timezone,
        reference_time(args.date, settings.recap_timezone),
    )
    github = github or GitHubClient.from_settings(settings)
    login = github.authenticated_login()
    logger.info("Authenticated with GitHub", login=login, author=settings.author_account)

    start = time.perf_counter()
    result = github.aggregate(window)
    log_elapsed(
        "Fetched commits",
        start,
        commits=result.commit_count,
        repos=result.repo_count,
    )
    log_sample(result)
    if args.dump_commits:
        write_commits(result, args.dump_commits)

    start = time.perf_counter()
    summary = Summarizer(client, settings.openai_model).summarize(result, window)
    log_elapsed("Generated summary", start, fallback=summary.is_fallback)
    if not summary.text.strip():
        raise EmptySummaryError

    metadata = build_run_metadata(window, result, settings.run_url)
    if args.dry_run or not settings.webhook_url:
        if not settings.webhook_url:
            logger.warning("WEBHOOK_URL not configured, summary will not be sent")
        logger.info("--- DRY RUN OUTPUT ---")
        log_summary(metadata, summary)
        return 0
    outcome = deliver(settings.webhook_url, summary, metadata)
    logger.info(
        "Daily recap completed",
        delivered=outcome.delivered,
        status=outcome.http_status,
        attempts=outcome.attempts,
    )
    if not outcome.delivered:
        logger.info("--- UNDELIVERED SUMMARY ---")
        log_summary(metadata, summary)
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Daily Development Recap")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print instead of posting to the webhook",
    )
    parser.add_argument(
        "--dump-commits",
        type=Path,
        default=None,
        help="Write the collected commits as JSON to this path",
    )
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="Resolve the window as if run on this local date (YYYY-MM-DD)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run the recap CLI."""
    logger.info("Starting daily recap run")
    args = parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        ]
        logger.error("Invalid configuration: {problems}", problems="; ".join(problems))
        return 1
    emit_actions_masks(settings)
    client = OpenAI(api_key=settings.openai_api_key, max_retries=0)
    try:
        return run_recap(args, settings, client)
    except (AuthenticationFailedError, WindowResolutionError, EmptySummaryError) as exc:
        logger.error("Fatal: {error}", error=str(exc))
        return 1


if __name__ == "__main__":
    sys.exit(main())
