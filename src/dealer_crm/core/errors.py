# src/dealer_crm/core/errors.py

"""
Error taxonomy shared by stores, services and connectors.

- RemoteOperationError: the backend (database/storage/API) call failed.
- OperationTimeoutError: a call exceeded its allotted duration.
- ValidationError: the caller passed something we refuse to persist.

Skipping a duplicate generated task is NOT an error; it is reported as a result.
"""

from __future__ import annotations

import logging
from typing import NoReturn

logger = logging.getLogger(__name__)


class CRMError(Exception):
    """Base class for all dealer_crm errors."""


class RemoteOperationError(CRMError):
    def __init__(self, message: str, *, operation: str | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class OperationTimeoutError(CRMError, TimeoutError):
    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(f"{operation} timed out after {timeout_seconds:g}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class ValidationError(CRMError, ValueError):
    pass


def handle_remote_error(error: BaseException, context: str) -> NoReturn:
    """
    Log a backend failure and re-raise it as RemoteOperationError.

    Errors that are already part of the taxonomy are re-raised unchanged.
    """
    if isinstance(error, CRMError):
        raise error
    message = str(error).strip()
    logger.error("[%s] backend error: %r", context, error)
    raise RemoteOperationError(message or f"Operation failed: {context}", operation=context) from error


def is_network_error(error: object) -> bool:
    if isinstance(error, ConnectionError):
        return True
    if not isinstance(error, Exception):
        return False
    msg = str(error).lower()
    return "network" in msg or "fetch" in msg or error.__class__.__name__ == "NetworkError"


def friendly_error_message(error: BaseException) -> str:
    """Short user-facing text for a failed operation."""
    if isinstance(error, OperationTimeoutError):
        return f"{error.operation} is taking too long. Please try again."
    if is_network_error(error):
        return "Network problem. Please check your connection and try again."
    msg = str(error).strip()
    return msg or "Something went wrong. Please try again."
