"""
Structured JSON logging for harness runs.

Every record carries the case context (case id, model) of the coroutine that
emitted it, so interleaved concurrent cases stay attributable.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

TEXT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

case_id_var: ContextVar[Optional[str]] = ContextVar('case_id', default=None)
model_var: ContextVar[Optional[str]] = ContextVar('model', default=None)


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per record with:
    - timestamp (ISO8601)
    - level
    - logger name
    - message
    - case_id / model (from context)
    - additional fields
    """

    def __init__(self, service_name: str, include_case: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_case = include_case

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'service': self.service_name,
        }

        if self.include_case:
            case_id = case_id_var.get()
            model = model_var.get()
            if case_id:
                log_data['case_id'] = case_id
            if model:
                log_data['model'] = model

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        for attr in ('outcome', 'duration_ms'):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        return json.dumps(log_data, default=str)


def setup_structured_logging(
    service_name: str,
    level: int = logging.INFO,
    json_output: bool = True,
) -> logging.Logger:
    """
    Configure the root logger for a harness run.

    Args:
        service_name: Name recorded in every JSON record
        level: Logging level
        json_output: JSON records when True, plain text otherwise

    Returns:
        The configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(StructuredJSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))
    logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    return logger


@contextmanager
def case_context(case_id: str, model: str) -> Iterator[None]:
    """Bind ``case_id`` and ``model`` to log records emitted inside the block."""
    case_token = case_id_var.set(case_id)
    model_token = model_var.set(model)
    try:
        yield
    finally:
        case_id_var.reset(case_token)
        model_var.reset(model_token)


class StructuredLogger:
    """
    Wrapper around Python logger with structured logging helpers.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def info(self, message: str, **kwargs):
        self.logger.info(message, extra={'extra_fields': kwargs})

    def log_case_result(
        self,
        case_id: str,
        outcome: str,
        duration_ms: float,
        detail: str = "",
        **kwargs
    ):
        """
        Log the terminal outcome of a case.

        Failures are logged at ERROR, skips at WARNING, passes at INFO.
        """
        message = f"{case_id} {outcome} {duration_ms:.0f}ms"
        if detail:
            message = f"{message}: {detail}"
        extra = {'outcome': outcome, 'duration_ms': round(duration_ms, 2)}
        extra.update(kwargs)

        if outcome == "failed":
            self.logger.error(message, extra=extra)
        elif outcome.startswith("skipped"):
            self.logger.warning(message, extra=extra)
        else:
            self.logger.info(message, extra=extra)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
