"""Script logging set up."""

import logging

import pytest

from apy_deploy.logging_config import LogConfig, LogLevel


def test_parse_level():
    assert LogLevel.parse("DEBUG") == LogLevel.debug
    assert LogLevel.parse(" warning ") == LogLevel.warning
    with pytest.raises(ValueError):
        LogLevel.parse("chatty")


def test_level_from_environment(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert LogConfig.from_environment().level == LogLevel.debug

    monkeypatch.delenv("LOG_LEVEL")
    assert LogConfig.from_environment(default_level=LogLevel.warning).level == LogLevel.warning


def test_setup_returns_component_logger(tmp_path):
    log_file = tmp_path / "logs" / "deploy.log"
    config = LogConfig(level=LogLevel.debug, name="apy_deploy.test_script", simplified=True, log_file=log_file)
    assert config.get_format()[0] == "%(message)s"

    root = logging.getLogger()
    handlers_before = list(root.handlers)
    try:
        logger = config.setup()
        assert logger.name == "apy_deploy.test_script"
        assert logger.level == logging.DEBUG

        logger.info("Deployed PoolManagerProxy")
        for handler in root.handlers:
            handler.flush()
        assert "Deployed PoolManagerProxy" in log_file.read_text()
    finally:
        for handler in root.handlers:
            if handler not in handlers_before:
                root.removeHandler(handler)
                handler.close()
