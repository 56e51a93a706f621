"""Tests for engine/health_check.py."""

from types import SimpleNamespace
from unittest.mock import patch

from database.session import create_db_engine
from engine.health_check import HealthChecker, HealthStatus


def _settings(**overrides):
    values = {
        "database_url": "postgresql://user:secret@db/attribution",
        "report_max_workers": None,
        "attribution_model": "linear",
        "attribution_lookback_days": 90,
        "time_decay_half_life_hours": 168.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestHealthChecker:
    """Component checks and overall status."""

    def test_all_healthy(self):
        engine = create_db_engine("sqlite://")
        result = HealthChecker(engine).check_all(_settings())
        assert result["status"] == "healthy"
        assert result["summary"] == {"total": 2, "healthy": 2, "degraded": 0, "unhealthy": 0}

    def test_password_is_masked(self):
        engine = create_db_engine("sqlite://")
        database = HealthChecker(engine).check_database_connection(_settings())
        assert "secret" not in database.details["url"]

    def test_missing_engine_is_degraded(self):
        result = HealthChecker().check_all(_settings())
        assert result["status"] == "degraded"

    def test_unreachable_database(self):
        engine = create_db_engine("sqlite://")
        with patch("engine.health_check.check_connection", return_value=False):
            check = HealthChecker(engine).check_database_connection(_settings())
        assert check.status == HealthStatus.UNHEALTHY

    def test_in_memory_database_warning(self):
        check = HealthChecker().check_configuration(_settings(database_url="sqlite:///:memory:"))
        assert check.status == HealthStatus.DEGRADED
        assert "in-memory" in check.message
