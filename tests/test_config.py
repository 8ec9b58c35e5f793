"""Tests for shared.config."""
import logging

from shared.config import Config


def test_config_defaults():
    cfg = Config()
    assert cfg.CORE_LOGIC_VERSION == "v1.3"
    assert cfg.DB_PATH == "data/linewatch.db"
    assert cfg.RESOLUTION_FAILURE_RETRY_MINUTES == 15
    assert cfg.WATCH_RETENTION_HOURS == 24
    assert cfg.BANKROLL_UNITS == 100.0


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("CORE_LOGIC_VERSION", "v1.0")
    monkeypatch.setenv("BANKROLL_UNITS", "250")
    monkeypatch.setenv("PROVIDER_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("DASHBOARD_PORT", "9090")
    cfg = Config.from_env()
    assert cfg.CORE_LOGIC_VERSION == "v1.0"
    assert cfg.BANKROLL_UNITS == 250.0
    assert cfg.PROVIDER_TIMEOUT_SECONDS == 2.5
    assert cfg.DASHBOARD_PORT == 9090


def test_config_log_level():
    assert Config(LOG_LEVEL="debug").log_level == logging.DEBUG
    assert Config(LOG_LEVEL="nonsense").log_level == logging.INFO
