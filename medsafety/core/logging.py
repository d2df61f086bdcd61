"""
Logging Configuration
"""
import logging
import sys
from pathlib import Path
from typing import Optional
import structlog

from medsafety.core.config import settings


def setup_logging() -> None:
    """Configure structured logging."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if settings.LOG_FORMAT == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))
    root_logger.addHandler(handler)

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get structured logger."""
    return structlog.get_logger(name)


class AuditLogger:
    """Audit logger for clinical safety evaluations."""

    def __init__(self):
        self.logger = get_logger("audit")

    def log_evaluation(self, medication_count: int, unresolved_count: int,
                       overall_risk: str, risk_score: int, duration_ms: float,
                       reference_data_version: str, correlation_id: str) -> None:
        """Log medication safety evaluation event."""
        self.logger.info(
            "medication_evaluation",
            event_type="clinical_decision",
            medication_count=medication_count,
            unresolved_count=unresolved_count,
            overall_risk=overall_risk,
            risk_score=risk_score,
            duration_ms=duration_ms,
            reference_data_version=reference_data_version,
            correlation_id=correlation_id,
        )

    def log_reference_data_change(self, previous_version: Optional[str], version: str,
                                  correlation_id: str) -> None:
        """Log reference data load or reload."""
        self.logger.info(
            "reference_data_loaded",
            event_type="configuration",
            previous_version=previous_version,
            version=version,
            correlation_id=correlation_id,
        )


audit_logger = AuditLogger()
