"""Error taxonomy shared by the queue, sync and AI layers."""
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.exc import DBAPIError

STORE_CONFIGURATION = "store_configuration"
WORKER_LOST = "worker_lost"
UNEXPECTED = "unexpected"

# Matched against driver errors only
_STORE_CONFIGURATION_MARKERS = (
    "no such table",
    "no such column",
    "does not exist",
    "undefinedtable",
    "undefinedcolumn",
    "requires an index",
)


class TransientAIError(Exception):
    """Timeout, connection failure, rate limit or 5xx from the AI service."""


class StructuralResponseError(Exception):
    """AI response was empty, not JSON, or did not match the schema. Never retried."""


class StoreConfigurationError(Exception):
    """The store is missing a table, column or index; needs an operator."""


class GmailAuthRequiredError(Exception):
    """Raised when Gmail needs interactive OAuth (browser). Do not run in background task."""


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else exc.__class__.__name__


def is_store_configuration_error(exc: BaseException) -> bool:
    if isinstance(exc, StoreConfigurationError):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    text = str(exc).lower()
    return any(marker in text for marker in _STORE_CONFIGURATION_MARKERS)


@contextmanager
def store_query():
    """Re-raise driver errors about missing tables/columns/indexes as StoreConfigurationError."""
    try:
        yield
    except DBAPIError as e:
        if is_store_configuration_error(e):
            raise StoreConfigurationError(_first_line(e)) from e
        raise


def error_category(exc: BaseException) -> str:
    return STORE_CONFIGURATION if is_store_configuration_error(exc) else UNEXPECTED


def describe_error(exc: Optional[BaseException]) -> str:
    """Single human-readable line for job/sync records."""
    if exc is None:
        return "Unknown error"
    message = _first_line(exc)
    if is_store_configuration_error(exc):
        return f"Store configuration required: {message}"
    return message
