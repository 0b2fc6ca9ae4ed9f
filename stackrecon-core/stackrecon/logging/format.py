"""Log record formatting of stackrecon: abbreviated levels, compressed logger names and short thread names."""

import logging
from functools import lru_cache

MAX_THREAD_NAME_LEN = 12
MAX_NAME_LEN = 26

LOG_FORMAT = f"%(asctime)s.%(msecs)03d %(sr_level)5s --- [%(sr_thread){MAX_THREAD_NAME_LEN}s] %(sr_name)-{MAX_NAME_LEN}s : %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

LEVEL_ABBREVIATIONS = {
    logging.CRITICAL: "FATAL",
    logging.WARNING: "WARN",
}


class DefaultFormatter(logging.Formatter):
    def __init__(self, fmt: str = LOG_FORMAT, datefmt: str = LOG_DATE_FORMAT):
        super().__init__(fmt=fmt, datefmt=datefmt)


class AddFormattedAttributes(logging.Filter):
    """
    Sets the ``sr_level``, ``sr_name`` and ``sr_thread`` attributes used by ``LOG_FORMAT``. Thread names
    keep their suffix, so ``resource_worker_3`` stays distinguishable from ``resource_worker_4``.
    """

    def __init__(self, max_name_len: int = MAX_NAME_LEN, max_thread_len: int = MAX_THREAD_NAME_LEN):
        super().__init__()
        self.max_name_len = max_name_len
        self.max_thread_len = max_thread_len

    def filter(self, record: logging.LogRecord) -> bool:
        record.sr_level = LEVEL_ABBREVIATIONS.get(record.levelno, record.levelname)
        record.sr_name = _compressed_name(record.name, self.max_name_len)
        record.sr_thread = (record.threadName or "")[-self.max_thread_len :]
        return True


@lru_cache(maxsize=512)
def _compressed_name(name: str, length: int) -> str:
    return compress_logger_name(name, length)


def compress_logger_name(name: str, length: int) -> str:
    """
    Shortens a dotted logger name to ``length`` characters. Parts are collapsed to their first letter,
    starting with the outermost one, e.g. ``stackrecon.engine.deployer`` becomes ``s.e.deployer`` for a
    length of 12. If even the last part does not fit, it is truncated.
    """
    if len(name) <= length:
        return name

    parts = name.split(".")
    compressed = [part[0] for part in parts]
    # characters left after one letter per part and the dots in between
    available = length - (2 * len(parts) - 1)

    for index in reversed(range(len(parts))):
        extra = len(parts[index]) - 1
        if extra > available:
            if index == len(parts) - 1 and available > 0:
                compressed[index] = parts[index][: available + 1]
            break
        compressed[index] = parts[index]
        available -= extra

    return ".".join(compressed)
