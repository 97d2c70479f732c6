"""Configuration for the workflow services.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Nothing here is secret by default, so `WorkflowSettings()` always constructs.
Timing values are in seconds to match `asyncio.sleep`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkflowSettings(BaseSettings):
    """Settings for the session gate, ledgers and stage runner.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `WorkflowSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path = Field(
        default=Path("workflow_state/store.json"),
        validation_alias="WORKFLOW_STATE_PATH",
        description="JSON file backing the document store",
    )

    credit_multiplier: float = Field(
        default=1.8,
        validation_alias="WORKFLOW_CREDIT_MULTIPLIER",
        description="Sunshines credited per unit of donated currency",
        gt=0,
    )
    donation_amount: float = Field(
        default=50.0,
        validation_alias="WORKFLOW_DONATION_AMOUNT",
        description="Amount donated by the demo obtain-sunshines operation",
        gt=0,
    )

    pacing_min_seconds: float = Field(
        default=0.3,
        validation_alias="WORKFLOW_PACING_MIN_SECONDS",
        description="Lower bound of the randomised delay of a pacing sub-task",
        ge=0,
    )
    pacing_max_seconds: float = Field(
        default=2.4,
        validation_alias="WORKFLOW_PACING_MAX_SECONDS",
        description="Upper bound of the randomised delay of a pacing sub-task",
        ge=0,
    )
    effect_animation_seconds: float = Field(
        default=0.6,
        validation_alias="WORKFLOW_EFFECT_ANIMATION_SECONDS",
        description="Fixed delay before the effectful sub-task is shown at 99%",
        ge=0,
    )
    effect_timeout_seconds: float = Field(
        default=30.0,
        validation_alias="WORKFLOW_EFFECT_TIMEOUT_SECONDS",
        description="Timeout per attempt of the effectful call (0 means no timeout)",
        ge=0,
    )
    effect_max_retries: int = Field(
        default=2,
        validation_alias="WORKFLOW_EFFECT_MAX_RETRIES",
        description="Retries of the effectful call after an upstream failure or timeout",
        ge=0,
        le=10,
    )
    effect_retry_backoff_seconds: float = Field(
        default=0.5,
        validation_alias="WORKFLOW_EFFECT_RETRY_BACKOFF_SECONDS",
        description="Base delay of the exponential backoff between effectful retries",
        ge=0,
    )
    auto_advance_delay_seconds: float = Field(
        default=0.5,
        validation_alias="WORKFLOW_AUTO_ADVANCE_DELAY_SECONDS",
        description="Pause between a stage completing and the stepper advancing",
        ge=0,
    )

    github_token: str = Field(
        default="",
        validation_alias="WORKFLOW_GITHUB_TOKEN",
        description="Optional token for GitHub repository analysis (raises rate limits)",
    )
    gitlab_token: str = Field(
        default="",
        validation_alias="WORKFLOW_GITLAB_TOKEN",
        description="Optional token for GitLab repository analysis",
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        validation_alias="GITHUB_BASE_URL",
        description="GitHub REST API base URL",
    )
    repository_api_timeout_seconds: float = Field(
        default=30.0,
        validation_alias="WORKFLOW_REPOSITORY_API_TIMEOUT_SECONDS",
        description="Timeout of each repository API request",
        gt=0,
    )

    identity_tokens: str = Field(
        default="",
        validation_alias="WORKFLOW_IDENTITY_TOKENS",
        description="Comma-separated token=identity pairs for the static identity provider",
    )
    cors_origins: str = Field(
        default="http://localhost:4321,http://127.0.0.1:4321",
        validation_alias="WORKFLOW_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _check_pacing_range(self) -> WorkflowSettings:
        if self.pacing_min_seconds > self.pacing_max_seconds:
            raise ValueError("WORKFLOW_PACING_MIN_SECONDS must not exceed WORKFLOW_PACING_MAX_SECONDS")
        return self

    @property
    def pacing_range(self) -> tuple[float, float]:
        return (self.pacing_min_seconds, self.pacing_max_seconds)

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def parsed_identity_tokens(self) -> dict[str, str]:
        tokens: dict[str, str] = {}
        for pair in self.identity_tokens.split(","):
            token, sep, identity = pair.partition("=")
            if not sep or not token.strip() or not identity.strip():
                continue
            tokens[token.strip()] = identity.strip()
        return tokens
