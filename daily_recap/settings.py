"""Environment-backed settings for the daily recap."""
from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from daily_recap.errors import AuthenticationFailedError

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_TIMEZONE = "America/Los_Angeles"
DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_RATE_LIMIT_WAIT = 300
MIN_API_KEY_LENGTH = 10
MISSING_GITHUB_AUTH_MESSAGE = "Missing GitHub API credentials."


class Settings(BaseSettings):
    """Environment-backed settings for the recap run."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    token_github: str | None = Field(default=None, alias="TOKEN_GITHUB")
    github_token: str | None = Field(default=None, alias="GITHUB_TOKEN")
    gh_token: str | None = Field(default=None, alias="GH_TOKEN")
    author_account: str = Field(alias="AUTHOR_ACCOUNT")

    openai_api_key: str = Field(alias="OPENAI_API_KEY")
    openai_model: str = Field(default=DEFAULT_OPENAI_MODEL, alias="OPENAI_MODEL")
    webhook_url: str | None = Field(default=None, alias="WEBHOOK_URL")

    recap_timezone: str = Field(default=DEFAULT_TIMEZONE, alias="RECAP_TIMEZONE")
    recap_page_size: int = Field(default=DEFAULT_PAGE_SIZE, alias="RECAP_PAGE_SIZE", gt=0)
    recap_max_rate_limit_wait: int = Field(
        default=DEFAULT_MAX_RATE_LIMIT_WAIT,
        alias="RECAP_MAX_RATE_LIMIT_WAIT",
        ge=0,
    )
    recap_match_committer: bool = Field(default=True, alias="RECAP_MATCH_COMMITTER")

    github_api_url: str = Field(default=DEFAULT_GITHUB_API_URL, alias="GITHUB_API_URL")
    github_server_url: str = Field(default="https://github.com", alias="GITHUB_SERVER_URL")
    github_repository: str | None = Field(default=None, alias="GITHUB_REPOSITORY")
    github_run_id: str | None = Field(default=None, alias="GITHUB_RUN_ID")
    github_actions: bool = Field(default=False, alias="GITHUB_ACTIONS")

    @field_validator("openai_api_key")
    @classmethod
    def check_api_key(cls, value: str) -> str:
        """Reject keys that are obviously truncated."""
        if len(value.strip()) < MIN_API_KEY_LENGTH:
            msg = "OPENAI_API_KEY appears to be invalid (too short)"
            raise ValueError(msg)
        return value.strip()

    @property
    def hosting_token(self) -> str:
        """Return the first configured GitHub token."""
        token = self.token_github or self.github_token or self.gh_token
        if not token:
            raise AuthenticationFailedError(MISSING_GITHUB_AUTH_MESSAGE)
        return token

    @property
    def run_url(self) -> str | None:
        """Return the CI run URL when running under GitHub Actions."""
        if not self.github_repository or not self.github_run_id:
            return None
        server = self.github_server_url.rstrip("/")
        return f"{server}/{self.github_repository}/actions/runs/{self.github_run_id}"


def get_settings() -> Settings:
    """Load settings from environment variables."""
    return Settings.model_validate({})
