"""
Exceptions shared by the block store, event log and detectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any


class BlockErrorCode(IntEnum):
    # Stable codes surfaced to the admin UI; never renumber.
    INVALID_NONCE = 1
    MISSING_KEY_VALUE = 2
    MISSING_MATCH = 3
    INVALID_IP = 4
    INVALID_TYPE = 5
    MISSING_END_DATE = 6
    STORE_WRITE_FAILED = 7


BLOCK_ERROR_MESSAGES = {
    BlockErrorCode.INVALID_NONCE: "Invalid or expired security token. Please reload and try again.",
    BlockErrorCode.MISSING_KEY_VALUE: "You must enter a valid location key (ex. US, TX, etc.).",
    BlockErrorCode.MISSING_MATCH: "Missing required fields. Please try again.",
    BlockErrorCode.INVALID_IP: "Please enter a valid IP address.",
    BlockErrorCode.INVALID_TYPE: "Please select a valid type.",
    BlockErrorCode.MISSING_END_DATE: "Temporary blocks require an end date after the start date.",
    BlockErrorCode.STORE_WRITE_FAILED: "There was a problem adding the record to the database. Please try again.",
}


@dataclass
class BlockValidationError(Exception):
    code: BlockErrorCode
    message: str | None = None
    status_code: int = 400

    def __post_init__(self) -> None:
        if self.message is None:
            self.message = BLOCK_ERROR_MESSAGES[self.code]
        super().__init__(self.message)

    @property
    def error_code(self) -> str:
        return f"zerospam-error-{int(self.code)}"

    def to_payload(self) -> dict[str, Any]:
        return {"code": int(self.code), "error": self.error_code, "message": self.message}


class StoreWriteError(Exception):
    """Raised when the block store or event log fails to persist a row."""


class RemoteUnavailable(Exception):
    """Raised when an upstream lookup times out, fails or returns garbage."""

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or reason)
