"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from galaxy_workflow.config import WorkflowSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "LOG_LEVEL",
        "WORKFLOW_STATE_PATH",
        "WORKFLOW_CREDIT_MULTIPLIER",
        "WORKFLOW_PACING_MIN_SECONDS",
        "WORKFLOW_PACING_MAX_SECONDS",
        "WORKFLOW_IDENTITY_TOKENS",
        "WORKFLOW_GITHUB_TOKEN",
        "GITHUB_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_defaults() -> None:
    settings = WorkflowSettings()

    assert settings.log_level == "INFO"
    assert settings.state_path == Path("workflow_state/store.json")
    assert settings.credit_multiplier == 1.8
    assert settings.donation_amount == 50.0
    assert settings.pacing_range == (0.3, 2.4)
    assert settings.effect_timeout_seconds == 30.0
    assert settings.effect_max_retries == 2
    assert settings.auto_advance_delay_seconds == 0.5
    assert settings.github_token == ""
    assert settings.github_api_url == "https://api.github.com"
    assert settings.repository_api_timeout_seconds == 30.0


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "LOG_LEVEL=DEBUG",
                "WORKFLOW_CREDIT_MULTIPLIER=2.5",
                "WORKFLOW_STATE_PATH=custom/store.json",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = WorkflowSettings()

    assert settings.log_level == "DEBUG"
    assert settings.credit_multiplier == 2.5
    assert settings.state_path == Path("custom/store.json")


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKFLOW_PACING_MIN_SECONDS", "0.1")
    monkeypatch.setenv("WORKFLOW_PACING_MAX_SECONDS", "0.2")

    assert WorkflowSettings().pacing_range == (0.1, 0.2)


def test_inverted_pacing_range_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKFLOW_PACING_MIN_SECONDS", "3")
    monkeypatch.setenv("WORKFLOW_PACING_MAX_SECONDS", "1")

    with pytest.raises(ValidationError):
        WorkflowSettings()


def test_parsed_lists(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKFLOW_IDENTITY_TOKENS", "tok-a=alice, tok-b = bob ,broken,=x")
    monkeypatch.setenv("WORKFLOW_CORS_ORIGINS", "http://a, ,http://b")

    settings = WorkflowSettings()

    assert settings.parsed_identity_tokens() == {"tok-a": "alice", "tok-b": "bob"}
    assert settings.parsed_cors_origins() == ["http://a", "http://b"]
