"""
Structured logging configuration for the signing services.
Extends standard Python logging so that every record carries the current
signing context (keystore path, signer, document id).
"""

import json
import logging
import socket
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Dict, Optional

# Context variables for signing operations
current_keystore_path: ContextVar[Optional[str]] = ContextVar('current_keystore_path', default=None)
current_signer: ContextVar[Optional[str]] = ContextVar('current_signer', default=None)
current_document_id: ContextVar[Optional[str]] = ContextVar('current_document_id', default=None)


class StructuredFormatter(logging.Formatter):
    """Formatter that renders each record as a single JSON object with signing context."""

    def __init__(self, facility: str = "certsign"):
        super().__init__()
        self.hostname = socket.gethostname()
        self.facility = facility

    def format(self, record):
        message = {
            "timestamp": record.created,
            "host": self.hostname,
            "facility": self.facility,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "file": record.filename,
            "line": record.lineno,
            "thread": record.thread,
        }

        for key, value in get_signing_context().items():
            if value is not None:
                message[key] = value

        # Extra fields passed via logging(extra={"signing_*": ...})
        for key, value in record.__dict__.items():
            if key.startswith('signing_'):
                message[key] = str(value)

        if record.exc_info:
            message["exception"] = self.formatException(record.exc_info)

        return json.dumps(message)


def set_signing_context(
    keystore_path: str = None,
    signer: str = None,
    document_id: str = None
):
    """Set signing context for subsequent log messages."""
    if keystore_path is not None:
        current_keystore_path.set(keystore_path)
    if signer is not None:
        current_signer.set(signer)
    if document_id is not None:
        current_document_id.set(document_id)


def clear_signing_context():
    """Clear all signing context."""
    current_keystore_path.set(None)
    current_signer.set(None)
    current_document_id.set(None)


def get_signing_context() -> Dict[str, Optional[str]]:
    """Get current signing context."""
    return {
        "keystore_path": current_keystore_path.get(),
        "signer": current_signer.get(),
        "document_id": current_document_id.get()
    }


@contextmanager
def signing_context(**context):
    """Temporarily set signing context, restoring the previous values on exit."""
    old_context = get_signing_context()
    set_signing_context(**context)
    try:
        yield
    finally:
        clear_signing_context()
        set_signing_context(**old_context)


def setup_logging(level: str = "INFO", json_format: bool = True):
    """Install a console handler on the root logger (once)."""
    root_logger = logging.getLogger()

    if not any(getattr(h, '_certsign_handler', False) for h in root_logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        if json_format:
            console_handler.setFormatter(StructuredFormatter())
        else:
            console_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            ))
        console_handler._certsign_handler = True
        root_logger.addHandler(console_handler)

    root_logger.setLevel(level)

    # Silence pyHanko's chatty internals
    logging.getLogger('pyhanko').setLevel(logging.WARNING)
