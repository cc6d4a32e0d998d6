import datetime as _dt
import json
import logging
import sys

PACKAGE_LOGGER = "dex_swap_fetcher"


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per record.
    `exchange_id` and `event` extras are merged into the payload.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "exchange_id"):
            log_record["exchange_id"] = record.exchange_id
        if hasattr(record, "event"):
            log_record["event"] = record.event
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def setup_logging(level="INFO", json_format: bool = False) -> logging.Logger:
    """
    Attach a single stdout handler to the package logger. Calling it again
    only updates the level and formatter.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setFormatter(formatter)
    return logger
