from .logger import LoggerConfig, build_logger, configure_logging, parse_level

__all__ = ["LoggerConfig", "build_logger", "configure_logging", "parse_level"]
