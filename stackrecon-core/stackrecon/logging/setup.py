import logging
import sys

from stackrecon import config, constants

from .format import AddFormattedAttributes, DefaultFormatter

# levels of chatty loggers, never lower than the configured level
LOGGER_LEVELS = {
    "botocore": logging.ERROR,
    "urllib3": logging.WARNING,
    "plux": logging.WARNING,
    "stackrecon.providers.control_plane": logging.INFO,
    "stackrecon.stores": logging.INFO,
}

# levels of the same loggers with SR_LOG=trace
TRACE_LOGGER_LEVELS = {
    "plux": logging.DEBUG,
    "stackrecon.providers.control_plane": logging.DEBUG,
    "stackrecon.stores": logging.DEBUG,
}


def get_log_level_from_config() -> int:
    """SR_LOG wins over DEBUG. ``trace`` maps to DEBUG and additionally enables ``TRACE_LOGGER_LEVELS``."""
    if not config.SR_LOG:
        return logging.DEBUG if config.DEBUG else logging.INFO

    level = str(config.SR_LOG).lower()
    if level in constants.TRACE_LOG_LEVELS:
        return logging.DEBUG
    if level == "warn":
        return logging.WARNING
    return logging.getLevelName(level.upper())


def _set_logger_levels(log_level: int, levels: dict[str, int]) -> None:
    logging.root.setLevel(log_level)
    logging.getLogger("stackrecon").setLevel(log_level)
    for name, level in levels.items():
        logging.getLogger(name).setLevel(max(level, log_level))


def create_default_handler(log_level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(DefaultFormatter())
    handler.addFilter(AddFormattedAttributes())
    return handler


def setup_logging(log_level: int = logging.INFO) -> None:
    """Replaces the handlers of the root logger with a stderr handler using the stackrecon log format."""
    logging.basicConfig(level=log_level, handlers=[create_default_handler(log_level)], force=True)
    logging.captureWarnings(True)
    _set_logger_levels(log_level, LOGGER_LEVELS)


def setup_logging_from_config() -> None:
    setup_logging(get_log_level_from_config())

    if config.is_trace_logging_enabled():
        for name, level in TRACE_LOGGER_LEVELS.items():
            logging.getLogger(name).setLevel(level)


def setup_logging_for_cli(log_level: int = logging.INFO) -> None:
    # commands report progress on the console, existing handlers are kept
    logging.basicConfig(level=log_level)
    _set_logger_levels(log_level, LOGGER_LEVELS)
