from __future__ import annotations

import hmac
import secrets
import uuid
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

from traveldiary.auth.tokens import decode_refresh, issue_pair
from traveldiary.core import db
from traveldiary.core.crypto import hash_password, verify_password
from traveldiary.core.errors import Conflict, Unauthorized, Validation
from traveldiary.core.keys import USERS_INDEX_PK, key, pk_email, pk_user, pk_username
from traveldiary.core.logging import get_logger
from traveldiary.core.normalize import normalize_email, normalize_username, required_text
from traveldiary.core.time import now_ts
from traveldiary.metrics import NEW_USERS, record_login
from traveldiary.services.users import ACCOUNT_TYPES, PERSONAL, default_avatar, get_user

logger = get_logger(__name__)

UNIQUE = "UNIQUE"
MIN_PASSWORD = 6

# Login failures never reveal whether the account exists.
_INVALID = "Invalid credentials"


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password(secrets.token_hex(16))


def _sentinel(pk: str, user_id: str) -> Dict[str, Any]:
    return {"PK": pk, "SK": UNIQUE, "entity": "unique", "user_id": user_id}


def register(
    *,
    username: str,
    email: str,
    password: str,
    full_name: str,
    account_type: str = PERSONAL,
) -> Tuple[Dict[str, Any], str, str]:
    username = normalize_username(username)
    email = normalize_email(email)
    full_name = required_text(full_name, limit=50, field="full_name")
    if len(password or "") < MIN_PASSWORD:
        raise Validation(f"Password must be at least {MIN_PASSWORD} characters")
    if account_type not in ACCOUNT_TYPES:
        raise Validation("account_type must be 'personal' or 'business'")

    user_id = f"usr_{uuid.uuid4().hex}"
    now = now_ts()
    access, refresh = issue_pair(user_id)
    user = {
        "PK": pk_user(user_id),
        "SK": "META",
        "entity": "user",
        "id": user_id,
        "username": username,
        "username_lc": username.lower(),
        "email": email,
        "password_hash": hash_password(password),
        "full_name": full_name,
        "full_name_lc": full_name.lower(),
        "account_type": account_type,
        "bio": "",
        "profile_picture": default_avatar(full_name, account_type),
        "cover_photo": "",
        "location": "",
        "website": "",
        "business_email": "",
        "followers_count": 0,
        "following_count": 0,
        "posts_count": 0,
        "is_verified": False,
        "is_private": False,
        "refresh_token": refresh,
        "created_at": now,
        "updated_at": now,
        "GSI3PK": USERS_INDEX_PK,
        "GSI3SK": username.lower(),
    }
    try:
        db.transact([
            db.tx_put(user, condition_expr="attribute_not_exists(PK)"),
            db.tx_put(_sentinel(pk_username(username), user_id), condition_expr="attribute_not_exists(PK)"),
            db.tx_put(_sentinel(pk_email(email), user_id), condition_expr="attribute_not_exists(PK)"),
        ])
    except Conflict as exc:
        if exc.failed_at(1):
            raise Conflict("Username already taken") from exc
        if exc.failed_at(2):
            raise Conflict("Email already registered") from exc
        raise
    NEW_USERS.inc()
    logger.info("user_registered", user_id=user_id, account_type=account_type)
    return user, access, refresh


def _resolve_login(identifier: str) -> Optional[Dict[str, Any]]:
    ident = (identifier or "").strip()
    if not ident:
        return None
    pk = pk_email(ident) if "@" in ident else pk_username(ident)
    sentinel = db.get_item(key(pk, UNIQUE))
    if not sentinel:
        return None
    return get_user(sentinel["user_id"])


def _store_refresh(user_id: str, token: str, *, expected: Optional[str] = None) -> None:
    cond = "attribute_exists(PK)"
    vals: Dict[str, Any] = {":t": token}
    if expected is not None:
        cond += " AND #rt = :old"
        vals[":old"] = expected
    db.update_item(
        key=key(pk_user(user_id)),
        update_expr="SET #rt = :t",
        expr_names={"#rt": "refresh_token"},
        expr_vals=vals,
        condition_expr=cond,
        return_values="NONE",
    )


def authenticate(identifier: str, password: str) -> Tuple[Dict[str, Any], str, str]:
    user = _resolve_login(identifier)
    # unknown accounts still pay for one hash check
    encoded = user.get("password_hash", "") if user else _dummy_hash()
    valid = verify_password(password or "", encoded)
    if not user or not valid:
        record_login(False)
        raise Unauthorized(_INVALID)
    access, refresh = issue_pair(user["id"])
    _store_refresh(user["id"], refresh)
    record_login(True)
    logger.info("user_logged_in", user_id=user["id"])
    return user, access, refresh


def refresh_tokens(refresh_token: Optional[str]) -> Tuple[str, str]:
    """
    Rotate the token pair. The presented refresh token must match the one
    persisted on the user verbatim; rotation is conditional on that value so a
    token can be redeemed once.
    """
    if not refresh_token:
        raise Unauthorized("Refresh token required")
    payload = decode_refresh(refresh_token)
    user = get_user(payload["sub"])
    stored = (user or {}).get("refresh_token") or ""
    if not user or not hmac.compare_digest(stored, refresh_token):
        raise Unauthorized("Invalid refresh token")
    access, refresh = issue_pair(user["id"])
    try:
        _store_refresh(user["id"], refresh, expected=refresh_token)
    except Conflict as exc:
        raise Unauthorized("Invalid refresh token") from exc
    return access, refresh


def logout(user_id: str) -> None:
    db.update_item(
        key=key(pk_user(user_id)),
        update_expr="REMOVE #rt",
        expr_names={"#rt": "refresh_token"},
        condition_expr="attribute_exists(PK)",
        return_values="NONE",
    )
    logger.info("user_logged_out", user_id=user_id)
