"""
Error taxonomy — provider transport errors, pool exhaustion, tool lookup.

Transport errors carry a code, the HTTP status and raw body when available,
and a transient flag. The core never retries; callers may inspect
`is_transient` to decide.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


# ── Provider error codes ────────────────────────────────────────────

class ProviderErrorCode(Enum):
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    UNKNOWN_ERROR = "unknown_error"


_TRANSIENT = {
    ProviderErrorCode.NETWORK_ERROR,
    ProviderErrorCode.TIMEOUT,
    ProviderErrorCode.SERVER_ERROR,
}

_STATUS_MESSAGES = {
    ProviderErrorCode.BAD_REQUEST: "Bad request: check model name and parameters",
    ProviderErrorCode.UNAUTHORIZED: "Unauthorized: check the API key",
    ProviderErrorCode.FORBIDDEN: "Forbidden: the key lacks access to this resource",
    ProviderErrorCode.NOT_FOUND: "Not found: check the endpoint and model",
    ProviderErrorCode.SERVER_ERROR: "Server error: the backend is unavailable or rate limited",
}


def code_for_status(status: int) -> ProviderErrorCode:
    """Map a non-2xx HTTP status to an error code."""
    if status == 400:
        return ProviderErrorCode.BAD_REQUEST
    if status == 401:
        return ProviderErrorCode.UNAUTHORIZED
    if status == 403:
        return ProviderErrorCode.FORBIDDEN
    if status == 404:
        return ProviderErrorCode.NOT_FOUND
    return ProviderErrorCode.SERVER_ERROR


# ── Exceptions ──────────────────────────────────────────────────────

class YesImBotError(Exception):
    """Base class for all errors raised by the orchestration core."""


class ConfigError(YesImBotError):
    pass


class ProviderError(YesImBotError):
    """A tagged transport/protocol failure from one adapter."""

    def __init__(
        self,
        code: ProviderErrorCode,
        message: str = "",
        status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.code = code
        self.status = status
        self.body = body
        self.message = message or _STATUS_MESSAGES.get(code, code.value)
        super().__init__(self.message)

    @classmethod
    def from_status(cls, status: int, body: str = "") -> ProviderError:
        code = code_for_status(status)
        return cls(code, f"HTTP {status}: {_STATUS_MESSAGES[code]}", status=status, body=body)

    @property
    def is_transient(self) -> bool:
        return self.code in _TRANSIENT

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "status": self.status,
            "body": self.body,
            "transient": self.is_transient,
        }

    def __str__(self) -> str:
        status = f" (HTTP {self.status})" if self.status is not None else ""
        return f"[{self.code.value}]{status} {self.message}"


class NoAdapterAvailableError(YesImBotError):
    """The adapter pool is empty; the request cannot proceed."""

    def __init__(self, message: str = "No adapter available"):
        super().__init__(message)


class ToolNotFoundError(YesImBotError):

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Function not found: {name}")
