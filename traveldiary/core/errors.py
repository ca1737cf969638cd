from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException


class Validation(HTTPException):
    def __init__(self, message: str = "Invalid request"):
        super().__init__(400, message)


class Unauthorized(HTTPException):
    token_expired = False

    def __init__(self, message: str = "Not authorized"):
        super().__init__(401, message)


class TokenExpired(Unauthorized):
    token_expired = True

    def __init__(self, message: str = "Token expired"):
        super().__init__(message)


class Forbidden(HTTPException):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(403, message)


class NotFound(HTTPException):
    def __init__(self, message: str = "Not found"):
        super().__init__(404, message)


class Conflict(HTTPException):
    def __init__(self, message: str = "Conflict", reasons: Optional[List[Dict[str, Any]]] = None):
        super().__init__(409, message)
        self.reasons = reasons or []

    def failed_at(self, index: int) -> bool:
        """True when the transaction item at ``index`` failed its condition."""
        if index >= len(self.reasons):
            return False
        return (self.reasons[index] or {}).get("Code") == "ConditionalCheckFailed"


def error_body(exc: HTTPException) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "message": exc.detail}
    if exc.status_code == 401:
        body["requires_auth"] = True
        body["token_expired"] = bool(getattr(exc, "token_expired", False))
    return body
