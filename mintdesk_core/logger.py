"""
Structured JSON logging for MintDesk components.

Every logger lives under the ``mintdesk`` namespace. Level and an optional
log file come from MINTDESK_LOG_LEVEL / MINTDESK_LOG_FILE unless passed
explicitly. Each record is one JSON object per line; tracebacks are carried
in an ``exc`` field.
"""
import logging, json, sys, time, os

ROOT = "mintdesk"


class JsonFormatter(logging.Formatter):
    converter = time.gmtime

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%SZ")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def _qualify(name: str) -> str:
    if name == ROOT or name.startswith(ROOT + "."):
        return name
    return f"{ROOT}.{name}"


def get_logger(name=ROOT, level=None, to_file=None):
    """Unified structured logger for all MintDesk components."""
    logger = logging.getLogger(_qualify(name))
    logger.setLevel(level if level is not None else os.getenv("MINTDESK_LOG_LEVEL", "INFO").upper())
    to_file = to_file or os.getenv("MINTDESK_LOG_FILE")

    if not logger.handlers:
        formatter = JsonFormatter()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if to_file:
            os.makedirs(os.path.dirname(to_file) or ".", exist_ok=True)
            file_handler = logging.FileHandler(to_file)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
