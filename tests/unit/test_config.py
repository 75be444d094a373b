"""Tests for environment-driven settings."""

import pytest

from campus_assistant.config import BASE_DIR, load_settings

ENV_KEYS = (
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "STORE_PATH",
    "PROMPTS_DIR",
    "CONTEXT_WINDOW",
    "HISTORY_LIMIT",
    "RATE_LIMIT",
    "GENERATION_TIMEOUT_SECONDS",
    "PLATFORM_NAME",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    """Test defaults without any environment."""
    settings = load_settings()

    assert settings.gemini_model == "gemini-2.0-flash"
    assert settings.context_window == 20
    assert settings.history_limit == 50
    assert settings.rate_limit == 20
    assert settings.store_path is None
    assert settings.prompts_dir == (BASE_DIR / "prompts").resolve()
    assert not settings.uses_supabase


def test_overrides(monkeypatch, tmp_path):
    """Test environment values override defaults."""
    monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.test/")
    monkeypatch.setenv("SUPABASE_KEY", "secret")
    monkeypatch.setenv("CONTEXT_WINDOW", "8")
    monkeypatch.setenv("GENERATION_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("PLATFORM_NAME", "Dorm Market")
    monkeypatch.setenv("STORE_PATH", str(tmp_path / "log.json"))

    settings = load_settings()

    assert settings.supabase_url == "https://project.supabase.test"
    assert settings.uses_supabase
    assert settings.context_window == 8
    assert settings.generation_timeout == 2.5
    assert settings.platform_name == "Dorm Market"
    assert settings.store_path == tmp_path / "log.json"


def test_invalid_number(monkeypatch):
    """Test malformed numbers fail loudly."""
    monkeypatch.setenv("RATE_LIMIT", "lots")

    with pytest.raises(ValueError):
        load_settings()
