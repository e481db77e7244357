"""
Logging setup — request-id stamping and console handlers.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Optional

from rich.logging import RichHandler

NO_REQUEST_ID = "-"

request_id_var: ContextVar[str] = ContextVar("request_id", default=NO_REQUEST_ID)

PLAIN_FORMAT = "%(asctime)s level=%(levelname)s logger=%(name)s request_id=%(request_id)s %(message)s"
RICH_FORMAT = "[%(request_id)s] %(message)s"


class RequestIdFilter(logging.Filter):
    """Adds the current request id to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def setup_logging(level: str = "INFO", env: str = "development", stream=None) -> logging.Logger:
    root = logging.getLogger("tgbridge")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler: logging.Handler
    if env == "development":
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter(RICH_FORMAT))
    else:
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
    root.propagate = False
    return root


def get_logger(name: str, logger: Optional[logging.Logger] = None) -> logging.Logger:
    """Return the injected logger, or the module logger for `name`."""
    return logger if logger is not None else logging.getLogger(name)
