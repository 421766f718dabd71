from typing import Any, Dict, List, Optional


class AppError(Exception):
    """Base for errors rendered as a structured failure response."""

    category = "server"
    status_code = 500

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": False, "category": self.category, "message": self.message}
        if self.errors:
            out["errors"] = self.errors
        return out


class ValidationFailed(AppError):
    category = "validation"
    status_code = 400


class NotFound(AppError):
    category = "not_found"
    status_code = 404


class Conflict(AppError):
    category = "conflict"
    status_code = 409


class Unavailable(AppError):
    category = "unavailable"
    status_code = 503
