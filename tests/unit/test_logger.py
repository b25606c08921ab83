from __future__ import annotations

import logging

from brepbridge.logging import LoggerConfig, build_logger, configure_logging, parse_level


def test_build_logger_idempotent_with_same_file(tmp_path):
    log_file = tmp_path / "bridge.log"
    cfg = LoggerConfig(name="brepbridge.test.logger", log_file=str(log_file), level=logging.INFO)
    a = build_logger(cfg)
    b = build_logger(cfg)
    assert a is b
    assert sum(1 for h in a.handlers if getattr(h, "baseFilename", "").endswith("bridge.log")) == 1


def test_build_logger_writes_records(tmp_path):
    log_file = tmp_path / "records.log"
    logger = build_logger(LoggerConfig(name="brepbridge.test.records", log_file=str(log_file)))
    logger.info("scope closed cleanly")
    for h in logger.handlers:
        h.flush()
    assert "scope closed cleanly" in log_file.read_text(encoding="utf-8")


def test_log_dir_is_used_when_no_file_given(tmp_path):
    logger = build_logger(LoggerConfig(name="brepbridge.test.dir", log_dir=str(tmp_path / "logs")))
    files = [getattr(h, "baseFilename", "") for h in logger.handlers]
    assert any(f.endswith("brepbridge_test_dir.log") for f in files)
    assert (tmp_path / "logs").is_dir()


def test_parse_level_accepts_names_numbers_and_junk():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level("WARNING") == logging.WARNING
    assert parse_level("15") == 15
    assert parse_level(logging.ERROR) == logging.ERROR
    assert parse_level("not-a-level") == logging.INFO
    assert parse_level(None, default=logging.WARNING) == logging.WARNING


def test_configure_logging_applies_overrides_and_ignores_none(tmp_path):
    logger = configure_logging(
        name="brepbridge.test.configure",
        log_file=str(tmp_path / "cfg.log"),
        level="debug",
        console=None,
    )
    assert logger.level == logging.DEBUG
    assert logger.propagate is False
