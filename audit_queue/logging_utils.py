"""Logging setup and request-scoped loggers."""

import logging
import os
from typing import Mapping, Optional, Union
from uuid import uuid4

REQUEST_ID_HEADERS = ("x-request-id", "x-correlation-id", "x-trace-id")

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def setup_logging():
    """Setup logging configuration."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every message with the request id it was created for."""

    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']}] {msg}", kwargs


def get_request_id(headers: Optional[Mapping[str, str]] = None) -> str:
    """Take the caller's request id from the usual headers, or make a new one."""
    if headers:
        lowered = {key.lower(): value for key, value in headers.items()}
        for name in REQUEST_ID_HEADERS:
            value = lowered.get(name)
            if value:
                return value
    return uuid4().hex[:12]


def bind_request_id(logger: LoggerLike, request_id: str) -> RequestLoggerAdapter:
    """Wrap ``logger`` so its lines carry ``request_id``."""
    if isinstance(logger, logging.LoggerAdapter):
        logger = logger.logger
    return RequestLoggerAdapter(logger, {"request_id": request_id})
