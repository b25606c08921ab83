"""Package logger setup.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached once, by the application or a tool, through ``configure_logging``
or ``build_logger``.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, Union

from .. import config as _config

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def parse_level(value: Union[int, str, None], default: int = logging.INFO) -> int:
    """Accept ``logging`` constants, numeric strings or names like ``"debug"``."""
    if value is None or value == "":
        return int(default)
    if isinstance(value, int):
        return value
    token = str(value).strip()
    if token.isdigit():
        return int(token)
    level = logging.getLevelName(token.upper())
    return level if isinstance(level, int) else int(default)


@dataclass(frozen=True)
class LoggerConfig:
    name: str = "brepbridge"
    level: int = field(default_factory=lambda: parse_level(_config.LOG_LEVEL))
    max_bytes: int = 2_000_000
    backup_count: int = 5
    encoding: str = "utf-8"
    console: bool = field(default_factory=lambda: _config.LOG_STDOUT)
    log_file: Optional[str] = None
    log_dir: Optional[str] = field(default_factory=lambda: _config.LOG_DIR or None)


def _default_log_file(name: str, log_dir: Optional[str]) -> str:
    app_dir = Path(log_dir) if log_dir else Path(os.path.expanduser("~")) / ".brepbridge" / "logs"
    return str(app_dir / f"{name.replace('.', '_')}.log")


def _same_file(handler: logging.Handler, path: str) -> bool:
    base = getattr(handler, "baseFilename", None)
    if not base:
        return False
    return os.path.normcase(os.path.abspath(base)) == os.path.normcase(os.path.abspath(path))


def _is_console(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler)


def build_logger(cfg: LoggerConfig) -> logging.Logger:
    """Build or reuse a rotating logger with optional console output.

    Calling it twice with the same name and file returns the same logger
    without stacking handlers. Module loggers under ``brepbridge.*``
    propagate into the logger built for ``brepbridge``.
    """
    logger = logging.getLogger(cfg.name)
    logger.setLevel(int(cfg.level))
    formatter = logging.Formatter(_FORMAT)

    log_file = os.path.abspath(cfg.log_file or _default_log_file(cfg.name, cfg.log_dir))
    Path(os.path.dirname(log_file)).mkdir(parents=True, exist_ok=True)
    if not any(_same_file(h, log_file) for h in logger.handlers):
        handler = RotatingFileHandler(
            log_file,
            maxBytes=int(cfg.max_bytes),
            backupCount=int(cfg.backup_count),
            encoding=cfg.encoding,
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if cfg.console and not any(_is_console(h) for h in logger.handlers):
        stream = logging.StreamHandler(stream=sys.stdout)
        stream.setFormatter(formatter)
        logger.addHandler(stream)

    logger.propagate = False
    return logger


def configure_logging(**overrides: Any) -> logging.Logger:
    """Configure the ``brepbridge`` logger from ``BREP_LOG_*`` plus overrides.

    ``level`` may be given as a name; ``None`` values are ignored so CLI
    defaults do not mask the environment.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    if "level" in values:
        values["level"] = parse_level(values["level"])
    return build_logger(replace(LoggerConfig(), **values))
