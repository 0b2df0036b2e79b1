# app/core/errors.py
from __future__ import annotations

from enum import Enum
from typing import Optional


class VerificationReason(str, Enum):
    NOT_FOUND = "not_found"
    TRANSACTION_FAILED = "transaction_failed"
    SENDER_MISMATCH = "sender_mismatch"
    AMOUNT_MISMATCH = "amount_mismatch"


class DownloadReason(str, Enum):
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"
    NOT_FOUND = "not_found"


class LifecycleError(Exception):
    """
    Base of every error an externally callable operation can report.

    The API layer turns these into a discriminated JSON body:
      {"success": false, "error": code, "reason": reason, "detail": message}
    """
    code: str = "error"
    status_code: int = 500

    def __init__(self, message: str, *, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.code,
            "reason": self.reason,
            "detail": self.message,
        }


class ValidationError(LifecycleError):
    code = "validation_error"
    status_code = 400


class AuthError(LifecycleError):
    code = "auth_error"
    status_code = 401


class NotFoundError(LifecycleError):
    code = "not_found"
    status_code = 404


class ConflictError(LifecycleError):
    code = "conflict"
    status_code = 409


class VerificationError(LifecycleError):
    code = "verification_error"
    status_code = 402

    def __init__(self, reason: VerificationReason, message: Optional[str] = None):
        super().__init__(message or reason.value.replace("_", " "), reason=reason.value)
        self.verification_reason = reason


class GenerationError(LifecycleError):
    code = "generation_error"
    status_code = 500


class DownloadError(LifecycleError):
    code = "download_error"

    _STATUS = {
        DownloadReason.EXPIRED: 410,
        DownloadReason.LIMIT_REACHED: 403,
        DownloadReason.NOT_FOUND: 404,
    }

    def __init__(self, reason: DownloadReason, message: Optional[str] = None):
        super().__init__(message or reason.value.replace("_", " "), reason=reason.value)
        self.download_reason = reason
        self.status_code = self._STATUS[reason]


class RefundError(LifecycleError):
    code = "refund_error"
    status_code = 502


class UpstreamError(LifecycleError):
    """A collaborator (chain RPC, payment processor) could not be reached or answered garbage."""
    code = "upstream_error"
    status_code = 502
