"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from earlypay.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Client libraries log every request at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def log_state_transition(
    request_id: str,
    transaction_id: str,
    idempotency_key: str,
    state: str,
    detail: str | None = None,
) -> None:
    """Log one commit state machine transition"""
    logging.info(
        "Early payment state transition",
        extra={
            "request_id": request_id,
            "transaction_id": transaction_id,
            "idempotency_key": idempotency_key,
            "step": state,
            "detail": detail,
        },
    )


def log_commit_outcome(
    request_id: str,
    transaction_id: str,
    state: str,
    duration_ms: float | None = None,
    replayed: bool = False,
) -> None:
    """Log structured commit outcome for analysis"""
    logging.info(
        "Early payment commit finished",
        extra={
            "request_id": request_id,
            "transaction_id": transaction_id,
            "step": "commit_complete",
            "outcome": state,
            "replayed": replayed,
            "duration_ms": duration_ms,
        },
    )
