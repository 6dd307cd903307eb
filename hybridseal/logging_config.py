"""
Logging configuration for HybridSeal.

Provides structured JSON logging and an audit logger for key lifecycle
and seal/open events. Only fingerprints, modes and algorithm ids are
ever logged; key material, passphrases and plaintext never are.
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Context variable for operation ID tracking across one seal/open call
operation_id_var: ContextVar[str] = ContextVar('operation_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per record, suitable for log aggregation.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        operation_id = operation_id_var.get()
        if operation_id:
            log_data["operation_id"] = operation_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data)


class AuditLogger:
    """
    Specialized logger for audit events.

    Records identity lifecycle, seal/open outcomes and security-relevant
    failures such as rejected signatures.
    """

    def __init__(self, name: str = "hybridseal.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        if not self._logger.isEnabledFor(level):
            return

        extra = {
            "event_type": event_type,
            "operation_id": operation_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def identity_generated(self, fingerprint: str, algorithm: str, protected: bool) -> None:
        self._log(
            logging.INFO,
            "IDENTITY_GENERATED",
            fingerprint=fingerprint,
            algorithm=algorithm,
            protected=protected,
            message=f"Identity generated ({algorithm})"
        )

    def key_unlocked(self, fingerprint: str) -> None:
        self._log(
            logging.DEBUG,
            "KEY_UNLOCKED",
            fingerprint=fingerprint,
            message="Private key unlocked"
        )

    def unlock_failed(self, fingerprint: Optional[str], reason: str) -> None:
        self._log(
            logging.WARNING,
            "UNLOCK_FAILED",
            fingerprint=fingerprint,
            reason=reason,
            message=f"Unlock failed: {reason}"
        )

    def message_sealed(
        self,
        mode: str,
        algorithm: Optional[str],
        recipients: list,
        signer: Optional[str] = None
    ) -> None:
        self._log(
            logging.INFO,
            "MESSAGE_SEALED",
            mode=mode,
            algorithm=algorithm,
            recipients=recipients,
            signer=signer,
            message=f"Message sealed ({mode})"
        )

    def message_opened(self, mode: str, verification: str, signer: Optional[str] = None) -> None:
        self._log(
            logging.INFO,
            "MESSAGE_OPENED",
            mode=mode,
            verification=verification,
            signer=signer,
            message=f"Message opened ({mode}, {verification})"
        )

    def verification_rejected(self, claimed_signer: Optional[str], reason: str) -> None:
        self._log(
            logging.WARNING,
            "VERIFICATION_REJECTED",
            claimed_signer=claimed_signer,
            reason=reason,
            message=f"Signature rejected: {reason}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # stderr keeps stdout free for CLI output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


@contextmanager
def operation_scope(operation_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind an operation ID to the current context for the duration of a block.

    Nested scopes keep the outer ID so one seal/open call logs under one ID.
    """
    current = operation_id_var.get()
    if current and operation_id is None:
        yield current
        return
    token = operation_id_var.set(operation_id or uuid.uuid4().hex[:16])
    try:
        yield operation_id_var.get()
    finally:
        operation_id_var.reset(token)


def get_operation_id() -> str:
    """Get the current operation ID."""
    return operation_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
