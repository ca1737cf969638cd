from __future__ import annotations

import uuid
from typing import Any, Dict, Tuple

import jwt

from traveldiary.core.errors import TokenExpired, Unauthorized
from traveldiary.core.settings import S
from traveldiary.core.time import now_ts

ALGORITHM = "HS256"


def _encode(user_id: str, secret: str, ttl_seconds: int, kind: str) -> str:
    now = now_ts()
    payload = {
        "sub": user_id,
        "typ": kind,
        "iat": now,
        "exp": now + ttl_seconds,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def issue_pair(user_id: str) -> Tuple[str, str]:
    access = _encode(user_id, S.jwt_access_secret, S.jwt_access_ttl_seconds, "access")
    refresh = _encode(user_id, S.jwt_refresh_secret, S.jwt_refresh_ttl_seconds, "refresh")
    return access, refresh


def _decode(token: str, secret: str, kind: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise Unauthorized("Invalid token") from exc
    if payload.get("typ") != kind or not payload.get("sub"):
        raise Unauthorized("Invalid token")
    return payload


def decode_access(token: str) -> Dict[str, Any]:
    return _decode(token, S.jwt_access_secret, "access")


def decode_refresh(token: str) -> Dict[str, Any]:
    try:
        return _decode(token, S.jwt_refresh_secret, "refresh")
    except TokenExpired as exc:
        raise Unauthorized("Refresh token expired") from exc
