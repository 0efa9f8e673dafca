"""Test suite for environment-driven settings."""

from mediai_chat.config import Settings


def test_session_secret_from_environment(monkeypatch):
    monkeypatch.setenv("SESSION_SECRET", "a-configured-secret")
    assert Settings.from_env().session_secret == "a-configured-secret"


def test_session_secret_is_random_when_unset(monkeypatch):
    """Test that no fixed, publicly known key is used to sign sessions."""
    monkeypatch.delenv("SESSION_SECRET", raising=False)

    first = Settings.from_env().session_secret
    second = Settings.from_env().session_secret

    assert first != second
    assert len(first) >= 32
    assert Settings().session_secret != Settings().session_secret


def test_defaults_from_environment(monkeypatch):
    for name in ("ANALYSIS_PROVIDER", "RATE_LIMIT", "DATABASE_URL", "CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LOG_JSON", "yes")

    settings = Settings.from_env()

    assert settings.analysis_provider == "gemini"
    assert settings.rate_limit == 50
    assert settings.database_url is None
    assert settings.cors_origins == ["*"]
    assert settings.log_json is True
