"""
Error taxonomy for the generation lifecycle.

Errors raised before a job is acknowledged are surfaced to the HTTP caller
(see jobs/routes.py). Errors raised after acknowledgement are absorbed into
the job record as status=failed + error_detail.
"""

import unicodedata

MAX_ERROR_DETAIL = 500


class PetDanceError(Exception):
    """Base class for every error this service raises on purpose."""


# ── Request-side ─────────────────────────────────────────────────────────────

class ValidationError(PetDanceError):
    """Malformed request (missing image URL, unknown dance style, ...)."""


class InsufficientBalanceError(PetDanceError):
    """Caller cannot afford a generation. No job is created."""


class UnauthorizedError(PetDanceError):
    pass


class JobNotFoundError(PetDanceError):
    """Job doesn't exist or is not owned by the caller."""


# ── Storage ──────────────────────────────────────────────────────────────────

class StorageError(PetDanceError):
    """Job store / credit ledger / blob storage read or write failed."""


class InvalidTransitionError(PetDanceError):
    """A write tried to move a job backwards or out of a terminal state."""


# ── Provider ─────────────────────────────────────────────────────────────────

class ProviderError(PetDanceError):
    def __init__(self, message: str, provider: str = "", status_code: int = 0):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Missing or rejected credentials (401/403)."""


class ProviderRequestError(ProviderError):
    """Provider refused the request (non-2xx other than auth / not-found)."""


class ProviderProtocolError(ProviderError):
    """2xx response that is missing fields we rely on (correlation id, result URL)."""


class ProviderTransientError(ProviderError):
    """Network failure or retryable status that outlived the backoff budget."""


class ProviderNotFoundError(ProviderError):
    """Provider doesn't know the correlation id (404)."""


UNKNOWN_ERROR = "Generation failed"


def describe_error(exc: BaseException) -> str:
    """The exception message, or its class name when the message is empty."""
    return str(exc).strip() or type(exc).__name__


def truncate_error(message: str, limit: int = MAX_ERROR_DETAIL) -> str:
    """
    Cap an error message at `limit` characters without leaving a dangling
    combining mark or half of a surrogate pair at the cut. Never returns an
    empty string.
    """
    message = "" if message is None else str(message).strip()
    if not message:
        return UNKNOWN_ERROR
    if len(message) <= limit:
        return message

    cut = limit
    # Back off over combining marks so a base character keeps its accents
    while cut > 0 and unicodedata.combining(message[cut]):
        cut -= 1
    # Lone high surrogate (only possible with surrogateescape'd input)
    if cut > 0 and "\ud800" <= message[cut - 1] <= "\udbff":
        cut -= 1
    return message[:cut] or UNKNOWN_ERROR
