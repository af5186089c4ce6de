"""Exceptions raised by the recap pipeline."""
from __future__ import annotations


class AuthenticationFailedError(RuntimeError):
    """Raised when the hosting API token does not resolve to a user."""

    def __init__(self, detail: str) -> None:
        """Create an authentication error."""
        super().__init__(f"GitHub authentication failed: {detail}")


class WindowResolutionError(RuntimeError):
    """Raised when the reporting window cannot be computed."""

    def __init__(self, detail: str) -> None:
        """Create a window resolution error."""
        super().__init__(f"Could not resolve reporting window: {detail}")


class RateLimitAbandonedError(RuntimeError):
    """Raised when waiting for a rate limit reset would take too long."""

    def __init__(self, wait_seconds: int, max_wait: int) -> None:
        """Create a rate limit error."""
        self.wait_seconds = wait_seconds
        super().__init__(
            f"Rate limit reset in {wait_seconds}s exceeds the {max_wait}s cap",
        )


class SummarizerAuthError(RuntimeError):
    """Raised when the summarization API rejects the credentials."""


class EmptySummaryError(RuntimeError):
    """Raised when no summary text is available for delivery."""

    def __init__(self) -> None:
        """Create an empty summary error."""
        super().__init__("Summary text is empty.")


class WebhookDeliveryError(RuntimeError):
    """Raised when a webhook call does not return a 2xx status."""

    def __init__(self, status_code: int) -> None:
        """Create a webhook error."""
        self.status_code = status_code
        super().__init__(f"Webhook delivery failed ({status_code})")
