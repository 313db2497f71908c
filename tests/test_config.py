import pytest
from pydantic import ValidationError

from suiteauth.config import Settings, get_settings, reset_settings_cache

SECRET = "x" * 40


class TestSettingsFromEnv:
    def test_reads_named_environment_variables(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", SECRET)
        monkeypatch.setenv("SESSION_TTL_SECONDS", "60")
        monkeypatch.setenv("COOKIE_SECURE", "false")
        monkeypatch.setenv("CORS_ALLOW_ORIGIN", "https://app.example.com")
        settings = Settings.from_env()
        assert settings.jwt_secret == SECRET
        assert settings.session_ttl_seconds == 60
        assert settings.cookie_secure is False
        assert settings.cors_allow_origin == "https://app.example.com"

    def test_defaults(self):
        settings = Settings(jwt_secret=SECRET)
        assert settings.session_ttl_seconds == 2_592_000
        assert settings.token_ttl_seconds == 2_592_000
        assert settings.magic_link_ttl_minutes == 15
        assert settings.pbkdf2_iterations == 100_000
        assert settings.auth_cookie_name == "auth_token"

    def test_cache_is_reset(self, monkeypatch):
        reset_settings_cache()
        first = get_settings()
        assert get_settings() is first
        monkeypatch.setenv("ENVIRONMENT", "staging")
        reset_settings_cache()
        assert get_settings().environment == "staging"
        reset_settings_cache()


class TestValidation:
    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError):
            Settings(jwt_secret="too-short")

    @pytest.mark.parametrize(
        "field", ["session_ttl_seconds", "token_ttl_seconds", "pbkdf2_iterations"]
    )
    def test_non_positive_values_rejected(self, field):
        with pytest.raises(ValidationError):
            Settings(jwt_secret=SECRET, **{field: 0})


class TestGeneratedSecret:
    def test_secret_is_generated_and_persisted(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STATE_DIR", str(tmp_path))
        first = Settings().jwt_secret
        assert len(first) >= 32
        assert (tmp_path / ".jwt_secret").read_text().strip() == first
        # a second process reads the same secret back
        assert Settings().jwt_secret == first

    def test_from_env_without_secret_generates_one(self, monkeypatch, tmp_path):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.setenv("STATE_DIR", str(tmp_path))
        settings = Settings.from_env()
        assert len(settings.jwt_secret) >= 32
        assert (tmp_path / ".jwt_secret").exists()

    def test_short_persisted_secret_is_replaced(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STATE_DIR", str(tmp_path))
        (tmp_path / ".jwt_secret").write_text("short")
        secret = Settings().jwt_secret
        assert secret != "short"
        assert len(secret) >= 32
