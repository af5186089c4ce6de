"""Build Teams webhook cards and deliver them with retry."""
from __future__ import annotations

import time
from datetime import UTC, datetime
from enum import StrEnum

import requests
from loguru import logger

from daily_recap.errors import WebhookDeliveryError
from daily_recap.models import (
    AggregationResult,
    DeliveryOutcome,
    JSONDict,
    RunMetadata,
    SummaryResult,
    TimeWindow,
)
from daily_recap.window import run_title

WEBHOOK_MAX_ATTEMPTS = 3
WEBHOOK_BASE_DELAY = 2
RATE_LIMITED_MULTIPLIER = 3
HTTP_TOO_MANY_REQUESTS = 429
WEBHOOK_TIMEOUT = 10
SUCCESS_CLASS = 2
GENERATED_AT_FORMAT = "%B %d, %Y at %I:%M %p UTC"
THEME_COLOR = "0078D4"
IDLE_THEME_COLOR = "8A8886"
SUMMARY_HEADING = "**Summary of Work Completed**"
RUN_ACTION_TITLE = "🔍 View Workflow Run"
NATIVE_MARKERS = ("webhook.office.com/webhookb2", "outlook.office.com/webhook")
CONNECTOR_MARKERS = (
    "logic.azure.com",
    "powerautomate",
    "powerplatform.com",
    "/workflows/",
)


class WebhookDialect(StrEnum):
    """Payload schema understood by a webhook endpoint."""

    NATIVE = "native"
    CONNECTOR = "connector"
    UNKNOWN = "unknown"


def classify_webhook(url: str) -> WebhookDialect:
    """Guess the webhook dialect from its URL."""
    lowered = url.lower()
    if any(marker in lowered for marker in NATIVE_MARKERS):
        return WebhookDialect.NATIVE
    if any(marker in lowered for marker in CONNECTOR_MARKERS):
        return WebhookDialect.CONNECTOR
    return WebhookDialect.UNKNOWN


def payload_dialect(dialect: WebhookDialect) -> WebhookDialect:
    """Return the schema to send; unknown endpoints get the connector card."""
    if dialect is WebhookDialect.UNKNOWN:
        return WebhookDialect.CONNECTOR
    return dialect


def build_run_metadata(
    window: TimeWindow,
    result: AggregationResult,
    run_url: str | None = None,
    now: datetime | None = None,
) -> RunMetadata:
    """Collect the values rendered into the card."""
    generated = (now or datetime.now(UTC)).astimezone(UTC)
    return RunMetadata(
        title=run_title(window),
        generated_at=generated.strftime(GENERATED_AT_FORMAT),
        period_label=window.period_label,
        commit_count=result.commit_count,
        repo_count=result.repo_count,
        run_url=run_url,
    )


def build_facts(metadata: RunMetadata) -> list[tuple[str, str]]:
    """Return (name, value) rows for the fact table."""
    period = ("📅 Time Period", metadata.period_label)
    if metadata.commit_count == 0:
        return [period]
    return [
        ("📚 Repositories Checked", str(metadata.repo_count)),
        ("💻 Commits Found", str(metadata.commit_count)),
        period,
    ]


def counts_line(metadata: RunMetadata) -> str:
    """Return the commit and repository counts as one line."""
    return f"Commits: {metadata.commit_count} | Repos: {metadata.repo_count}"


def native_text(summary: str) -> str:
    """MessageCard markdown needs blank lines to keep line breaks."""
    return "\n\n".join(line for line in summary.splitlines() if line.strip())


def build_message_card(summary: str, metadata: RunMetadata) -> JSONDict:
    """Build a native incoming-webhook MessageCard."""
    card: JSONDict = {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "themeColor": THEME_COLOR if metadata.commit_count else IDLE_THEME_COLOR,
        "title": metadata.title,
        "summary": counts_line(metadata),
        "sections": [
            {
                "activityTitle": metadata.generated_at,
                "facts": [
                    {"name": name, "value": value}
                    for name, value in build_facts(metadata)
                ],
            },
            {"title": SUMMARY_HEADING, "text": native_text(summary)},
        ],
    }
    if metadata.run_url:
        card["potentialAction"] = [
            {
                "@type": "OpenUri",
                "name": RUN_ACTION_TITLE,
                "targets": [{"os": "default", "uri": metadata.run_url}],
            },
        ]
    return card


def adaptive_attachment(content: JSONDict) -> JSONDict:
    """Wrap an Adaptive Card in a connector message."""
    return {
        "type": "message",
        "attachments": [
            {
                "contentType": "application/vnd.microsoft.card.adaptive",
                "content": {
                    "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
                    "type": "AdaptiveCard",
                    **content,
                },
            },
        ],
    }


def build_adaptive_card(summary: str, metadata: RunMetadata) -> JSONDict:
    """Build a workflow-connector Adaptive Card message."""
    body: list[JSONDict] = [
        {
            "type": "Container",
            "style": "emphasis",
            "bleed": True,
            "items": [
                {
                    "type": "TextBlock",
                    "text": metadata.title,
                    "size": "Large",
                    "weight": "Bolder",
                    "color": "Accent",
                    "wrap": True,
                },
                {
                    "type": "TextBlock",
                    "text": metadata.generated_at,
                    "size": "Small",
                    "spacing": "None",
                    "wrap": True,
                },
            ],
        },
        {
            "type": "FactSet",
            "facts": [
                {"title": name, "value": value} for name, value in build_facts(metadata)
            ],
            "spacing": "Medium",
        },
        {
            "type": "Container",
            "items": [
                {
                    "type": "TextBlock",
                    "text": SUMMARY_HEADING,
                    "size": "Medium",
                    "weight": "Bolder",
                    "wrap": True,
                },
                {"type": "TextBlock", "text": summary, "wrap": True, "spacing": "Small"},
            ],
        },
    ]
    content: JSONDict = {"version": "1.3", "body": body}
    if metadata.run_url:
        content["actions"] = [
            {
                "type": "Action.OpenUrl",
                "title": RUN_ACTION_TITLE,
                "url": metadata.run_url,
            },
        ]
    return adaptive_attachment(content)


def build_payload(
    dialect: WebhookDialect,
    summary: str,
    metadata: RunMetadata,
) -> JSONDict:
    """Build the primary card for a dialect."""
    if payload_dialect(dialect) is WebhookDialect.NATIVE:
        return build_message_card(summary, metadata)
    return build_adaptive_card(summary, metadata)


def build_fallback_payload(
    dialect: WebhookDialect,
    summary: str,
    metadata: RunMetadata,
) -> JSONDict:
    """Build a minimal card: title, counts and summary, no fact table."""
    if payload_dialect(dialect) is WebhookDialect.NATIVE:
        return {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "title": metadata.title,
            "text": native_text(f"{counts_line(metadata)}\n{summary}"),
        }
    return adaptive_attachment(
        {
            "version": "1.2",
            "body": [
                {"type": "TextBlock", "text": metadata.title, "weight": "Bolder", "wrap": True},
                {"type": "TextBlock", "text": counts_line(metadata), "wrap": True},
                {"type": "TextBlock", "text": summary, "wrap": True},
            ],
        },
    )


def post_webhook(webhook_url: str, payload: JSONDict) -> int:
    """POST a payload and return the status; non-2xx raises."""
    try:
        response = requests.post(
            webhook_url,
            json=payload,
            headers={"Accept": "application/json"},
            timeout=WEBHOOK_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise WebhookDeliveryError(0) from exc
    if response.status_code // 100 != SUCCESS_CLASS:
        raise WebhookDeliveryError(response.status_code)
    return response.status_code


def retry_delay(attempt: int, status_code: int, base_delay: float = WEBHOOK_BASE_DELAY) -> float:
    """Return the wait after a failed attempt; 429 triples the base delay."""
    if status_code == HTTP_TOO_MANY_REQUESTS:
        base_delay *= RATE_LIMITED_MULTIPLIER
    return base_delay * 2 ** (attempt - 1)


def post_with_retry(
    webhook_url: str,
    payload: JSONDict,
    max_attempts: int = WEBHOOK_MAX_ATTEMPTS,
) -> DeliveryOutcome:
    """Post a payload, retrying non-2xx outcomes with exponential backoff."""
    status_code = 0
    for attempt in range(1, max_attempts + 1):
        try:
            status_code = post_webhook(webhook_url, payload)
        except WebhookDeliveryError as exc:
            status_code = exc.status_code
            logger.warning(
                "Webhook delivery failed",
                status=status_code,
                attempt=attempt,
                max_attempts=max_attempts,
            )
        else:
            logger.info("Webhook delivered", status=status_code, attempt=attempt)
            return DeliveryOutcome(delivered=True, http_status=status_code, attempts=attempt)
        if attempt < max_attempts:
            delay = retry_delay(attempt, status_code)
            logger.info("Retrying webhook", wait_seconds=delay)
            time.sleep(delay)
    return DeliveryOutcome(delivered=False, http_status=status_code, attempts=max_attempts)


def deliver(
    webhook_url: str,
    summary: SummaryResult,
    metadata: RunMetadata,
) -> DeliveryOutcome:
    """Deliver the summary card, falling back to a simplified card once."""
    dialect = classify_webhook(webhook_url)
    logger.info(
        "Sending summary to webhook",
        detected=dialect.value,
        schema=payload_dialect(dialect).value,
    )
    primary = post_with_retry(webhook_url, build_payload(dialect, summary.text, metadata))
    if primary.delivered:
        return primary
    logger.warning("Primary card failed, sending simplified card")
    fallback = post_with_retry(
        webhook_url,
        build_fallback_payload(dialect, summary.text, metadata),
        max_attempts=1,
    )
    outcome = DeliveryOutcome(
        delivered=fallback.delivered,
        http_status=fallback.http_status,
        attempts=primary.attempts + fallback.attempts,
    )
    if not outcome.delivered:
        logger.error(
            "Failed to send webhook, summary is available in the run log",
            status=outcome.http_status,
            attempts=outcome.attempts,
        )
    return outcome
