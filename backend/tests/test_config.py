"""Tests for environment-driven settings and startup guardrails."""

import pytest

from core.config import Settings, _enforce_guardrails, get_settings


class TestDefaults:
    def test_engine_defaults(self, monkeypatch):
        monkeypatch.delenv("DECISION_DEADLINE_MS", raising=False)
        settings = Settings(_env_file=None)
        assert settings.decision_deadline_ms == 1500
        assert settings.plan_cache_ttl_seconds == 300
        assert settings.audit_queue_max_size == 1000
        assert settings.audit_retention_days == 90
        assert settings.min_orders_last_7_days == 30
        assert settings.min_completed_deliveries == 20
        assert settings.alert_channel_prefix == "logistics_alerts"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DECISION_DEADLINE_MS", "250")
        monkeypatch.setenv("redis_url", "redis://cache:6379/2")
        settings = Settings(_env_file=None)
        assert settings.decision_deadline_ms == 250
        assert settings.redis_url == "redis://cache:6379/2"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestGuardrails:
    def test_non_positive_deadline_rejected(self):
        with pytest.raises(ValueError, match="decision_deadline_ms"):
            _enforce_guardrails(Settings(_env_file=None, decision_deadline_ms=0))

    def test_non_positive_queue_rejected(self):
        with pytest.raises(ValueError, match="audit_queue_max_size"):
            _enforce_guardrails(Settings(_env_file=None, audit_queue_max_size=0))

    def test_debug_refused_outside_local(self):
        with pytest.raises(ValueError, match="debug"):
            _enforce_guardrails(Settings(_env_file=None, app_env="production", debug=True))

    def test_debug_allowed_locally(self):
        _enforce_guardrails(Settings(_env_file=None, app_env="local", debug=True))

    def test_production_without_debug(self):
        _enforce_guardrails(Settings(_env_file=None, app_env="production", debug=False))
