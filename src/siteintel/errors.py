from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    CACHE_BACKEND_UNAVAILABLE = "CACHE_BACKEND_UNAVAILABLE"
    ATTEMPT_FAILED = "ATTEMPT_FAILED"
    ATTEMPT_INVALID = "ATTEMPT_INVALID"
    QUALITY_INVALID = "QUALITY_INVALID"
    VALIDATION_FAILED = "VALIDATION_FAILED"


class SiteIntelError(Exception):
    """Raised internally when an injected collaborator breaks its contract.

    Public component methods never let this escape: the learning loop catches
    it at its boundary and reports it through ``LearningResult.error`` and
    ``LearningResult.error_code``.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }
