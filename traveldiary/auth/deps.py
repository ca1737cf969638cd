from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request

from traveldiary.auth.tokens import decode_access
from traveldiary.core.errors import Unauthorized
from traveldiary.services import users

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def extract_bearer_token(auth_header: Optional[str]) -> str:
    if not auth_header:
        raise Unauthorized("Missing Authorization header")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Invalid Authorization header")
    return token.strip()


def request_token(request: Request) -> str:
    """Bearer header first, then the access-token cookie."""
    auth = request.headers.get("authorization")
    if auth:
        return extract_bearer_token(auth)
    cookie = request.cookies.get(ACCESS_COOKIE)
    if cookie:
        return cookie
    raise Unauthorized("Not authorized, no token")


def get_current_user(request: Request) -> Dict[str, Any]:
    payload = decode_access(request_token(request))
    user = users.get_user(payload["sub"])
    if not user:
        raise Unauthorized("User not found")
    return user
