from __future__ import annotations

import logging
import sys
from typing import Optional

from .logging_redactor import RedactionFilter, install_redaction_filter

_configured = False


class _OneLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        return base.replace("\n", " | ")


def configure_logging(level: int = logging.INFO) -> None:
    global _configured
    logger = logging.getLogger()
    logger.setLevel(level)

    # Drop previously attached redaction filters so re-configuring doesn't stack them
    for f in list(logger.filters):
        if isinstance(f, RedactionFilter):
            logger.removeFilter(f)
    for h in list(logger.handlers):
        for f in list(h.filters):
            if isinstance(f, RedactionFilter):
                h.removeFilter(f)
        if getattr(h, "_cutroom_handler", False):
            logger.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_OneLineFormatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s"))
    handler._cutroom_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    # Attached at the logger level too so caplog-style collectors see redacted messages.
    install_redaction_filter(logger)
    _configured = True

    # Quiet noisy libraries a bit
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name:
        name = __name__
    if not _configured:
        configure_logging()
    return logging.getLogger(name)
