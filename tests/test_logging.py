"""Tests for the log file routing."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from colloquy.services.settings import Settings
from colloquy.utils import logging as logging_utils


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def test_setup_logging_writes_to_settings_directory(tmp_path: Path) -> None:
    settings = Settings(log_dir=str(tmp_path / "logs"), log_level="info")

    log_path = logging_utils.setup_logging(settings, force=True)

    logging.getLogger("colloquy.tests").info("Logging smoke test")
    logging.getLogger("colloquy.tests").debug("hidden detail")
    _flush()

    assert log_path == tmp_path / "logs" / "colloquy.log"
    contents = log_path.read_text(encoding="utf-8")
    assert "Logging smoke test" in contents
    assert "hidden detail" not in contents
    assert logging.getLogger("httpx").level == logging.WARNING


def test_debug_settings_lower_level_and_keep_sdk_loggers_quiet(tmp_path: Path) -> None:
    settings = Settings(log_dir=str(tmp_path), debug_logging=True)

    log_path = logging_utils.setup_logging(settings, console=False, force=True)

    logging.getLogger("colloquy.tests").debug("dispatch detail")
    _flush()

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("openai").level == logging.WARNING
    assert "dispatch detail" in log_path.read_text(encoding="utf-8")


def test_unknown_log_level_falls_back_to_info(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    settings = Settings(log_dir=str(tmp_path), log_level="chatty")

    with caplog.at_level(logging.WARNING, logger="colloquy.utils.logging"):
        logging_utils.setup_logging(settings, force=True)

    assert logging.getLogger().level == logging.INFO
    assert "Unknown log level" in caplog.text


def test_setup_logging_is_idempotent_without_force(tmp_path: Path) -> None:
    first = logging_utils.setup_logging(Settings(log_dir=str(tmp_path / "a")), force=True)

    second = logging_utils.setup_logging(Settings(log_dir=str(tmp_path / "b")))

    assert second == first


def test_resolve_log_path_defaults_to_home_directory() -> None:
    assert logging_utils.resolve_log_path(Settings()) == Path.home() / ".colloquy" / "logs" / "colloquy.log"
