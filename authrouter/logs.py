# authrouter/logs.py
"""Logging setup: readable lines on a terminal, JSON lines everywhere else."""
import json
import logging
import sys

HUMAN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s"
_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "log.time": self.formatTime(record, _TIME_FORMAT),
            "log.level": record.levelname,
            "log.logger": record.name,
            "log.message": record.getMessage(),
        }
        if record.exc_info:
            entry["log.error"] = self.formatException(record.exc_info)
        return json.dumps(entry, separators=(",", ":"))


def parse_level(name: str) -> int:
    """Map error|warn|info|debug to a logging level; anything else is INFO."""
    return _LEVELS.get(name.strip().lower(), logging.INFO)


def _use_human_format(fmt: str, stream) -> bool:
    fmt = fmt.strip().lower()
    if fmt == "human":
        return True
    if fmt == "machine":
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def configure_logging(level: str = "info", fmt: str = "auto", stream=None) -> None:
    stream = stream if stream is not None else sys.stderr
    handler = logging.StreamHandler(stream)
    if _use_human_format(fmt, stream):
        handler.setFormatter(logging.Formatter(HUMAN_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())
    logging.basicConfig(level=parse_level(level), handlers=[handler], force=True)
