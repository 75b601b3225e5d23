# proofdesk/errors.py
"""
Error taxonomy shared by intake, review and the HTTP layer.

Each error carries the error_code and HTTP status the API surfaces. The API
maps any ProofdeskError to {"success": false, "status": "error", ...}.
"""
from typing import Any, Dict, Optional

E_VALIDATION = "E_VALIDATION"
E_NOT_FOUND = "E_NOT_FOUND"
E_UPSTREAM = "E_UPSTREAM"
E_PERSISTENCE = "E_PERSISTENCE"
E_INTERNAL = "E_INTERNAL"
E_UNAUTHORIZED = "E_UNAUTHORIZED"


class ProofdeskError(Exception):
    error_code = E_INTERNAL
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "status": "error",
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ProofdeskError):
    """Required input missing; nothing was written."""
    error_code = E_VALIDATION
    http_status = 400


class NotFoundError(ProofdeskError):
    error_code = E_NOT_FOUND
    http_status = 404


class UpstreamError(ProofdeskError):
    """The bot API call failed (network, HTTP status or ok=false)."""
    error_code = E_UPSTREAM
    http_status = 500


class PersistenceError(ProofdeskError):
    error_code = E_PERSISTENCE
    http_status = 500


class PersistenceWarning(UserWarning):
    """Store read/write failure. Logged, never raised to callers."""
