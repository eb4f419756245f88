"""Error kinds raised by the field sync pipeline."""
from __future__ import annotations

from typing import Dict


class FieldSyncError(RuntimeError):
    """Base class for field sync failures."""

    code = "unknown_error"


class TokenDecryptionFailed(FieldSyncError):
    """The stored API token envelope was tampered with or is unreadable."""

    code = "token_error"


class OptionLookupFailed(FieldSyncError):
    """Option labels could not be fetched or parsed."""

    code = "option_lookup_failed"


class ResolutionAmbiguous(OptionLookupFailed):
    """Option labels were returned but carry no human readable text."""

    code = "option_lookup_failed"


class ConfigParseError(FieldSyncError):
    """The persisted field configuration exists but is not valid JSON."""

    code = "json_error"


class RateLimitExceeded(FieldSyncError):
    """Too many requests for an endpoint/actor pair in the current window."""

    code = "rate_limited"

    def __init__(self, endpoint: str, actor_key: str, limit: int) -> None:
        super().__init__(f"Rate limit of {limit} requests reached for {endpoint} ({actor_key})")
        self.endpoint = endpoint
        self.actor_key = actor_key
        self.limit = limit


class FileWriteFailed(FieldSyncError):
    """Writing a file failed after all retries were exhausted."""

    code = "write_failed"


class TemplateExists(FieldSyncError):
    """A bootstrap template is already present and ``force`` was not given."""

    code = "template_exists"


_USER_MESSAGES: Dict[str, str] = {
    "template_exists": "A template already exists. Confirm to overwrite it.",
    "token_error": "The API connection could not be established. Check the stored API token.",
    "option_lookup_failed": "Option labels could not be loaded; option ids are shown instead.",
    "json_error": "The field configuration could not be read. Repair or remove the file and sync again.",
    "rate_limited": "Too many requests. Please wait a moment and try again.",
    "write_failed": "The field configuration could not be saved. Please try again.",
    "unknown_error": "An unexpected error occurred. Please contact the administrator.",
}


def user_message(error: BaseException) -> str:
    """Return a user facing message for ``error``."""
    code = getattr(error, "code", "unknown_error")
    return _USER_MESSAGES.get(code, _USER_MESSAGES["unknown_error"])
