"""
Tests for logging setup and level resolution.
"""

import logging

import pytest

from comfy_provision.core.observability.logging_config import (
    ENV_LOG_FILE,
    ENV_LOG_FILE_LEVEL,
    ENV_LOG_LEVEL,
    resolve_level,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_root_logger(monkeypatch):
    for var in (ENV_LOG_LEVEL, ENV_LOG_FILE, ENV_LOG_FILE_LEVEL):
        monkeypatch.delenv(var, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestResolveLevel:
    def test_flags_in_order(self):
        assert resolve_level(debug=True, quiet=True) == "DEBUG"
        assert resolve_level(verbose=True, quiet=True) == "DEBUG"
        assert resolve_level(quiet=True) == "ERROR"

    def test_default(self):
        assert resolve_level() == "INFO"
        assert resolve_level(verbose=True) != resolve_level()

    def test_env(self, monkeypatch):
        monkeypatch.setenv(ENV_LOG_LEVEL, "WARNING")
        assert resolve_level() == "WARNING"
        assert resolve_level(debug=True) == "DEBUG"


class TestSetupLogging:
    def test_console_level(self):
        setup_logging("WARNING")
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1

    def test_unknown_level_is_info(self):
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.INFO

    def test_third_party_quieted(self):
        setup_logging("INFO")
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_verbose_keeps_third_party_quiet(self):
        setup_logging(resolve_level(verbose=True), quiet_third_party=True)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "provision.log"
        setup_logging("ERROR", log_file=str(log_file), log_file_level="DEBUG")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        logging.getLogger("comfy_provision.test").debug("into the file")
        for handler in root.handlers:
            handler.flush()
        assert "into the file" in log_file.read_text()

    def test_file_from_env(self, tmp_path, monkeypatch):
        log_file = tmp_path / "env.log"
        monkeypatch.setenv(ENV_LOG_FILE, str(log_file))
        setup_logging("INFO")
        assert any(isinstance(h, logging.FileHandler) for h in logging.getLogger().handlers)
