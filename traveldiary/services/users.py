from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import quote

from boto3.dynamodb.conditions import Key

from traveldiary.clients.media import IMAGE, MediaStore, Payload, classify
from traveldiary.core import db
from traveldiary.core.errors import Conflict, Forbidden, NotFound, Validation
from traveldiary.core.keys import USERS_INDEX_PK, key, pk_user
from traveldiary.core.logging import get_logger
from traveldiary.core.normalize import normalize_email, optional_text
from traveldiary.core.pagination import Page, paginate
from traveldiary.core.time import now_ts
from traveldiary.metrics import FOLLOW_EVENTS

if TYPE_CHECKING:
    from traveldiary.services.notifications import Fanout

logger = get_logger(__name__)

PERSONAL = "personal"
BUSINESS = "business"
ACCOUNT_TYPES = (PERSONAL, BUSINESS)

SEARCH_LIMIT = 20
SEARCH_PAGE_SIZE = 200
_TX_ATTEMPTS = 3

_EDGE_COUNTERS = {"following": "following_count", "followers": "followers_count"}


def default_avatar(full_name: str, account_type: str) -> str:
    background = "4285F4" if account_type == BUSINESS else "34A853"
    return f"https://ui-avatars.com/api/?name={quote(full_name or 'User')}&background={background}&color=fff&size=200"


# -----------------------------
# Reads / rendering
# -----------------------------
def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    if not user_id:
        return None
    return db.get_item(key(pk_user(user_id)))


def require_user(user_id: str) -> Dict[str, Any]:
    user = get_user(user_id)
    if not user:
        raise NotFound("User not found")
    return user


def load_users(user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    ids = {uid for uid in user_ids if uid}
    if not ids:
        return {}
    return {u["id"]: u for u in db.batch_get(key(pk_user(uid)) for uid in ids)}


def user_brief(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "username": user.get("username"),
        "full_name": user.get("full_name"),
        "profile_picture": user.get("profile_picture"),
        "account_type": user.get("account_type", PERSONAL),
        "is_verified": bool(user.get("is_verified")),
    }


def public_user(user: Dict[str, Any], viewer_id: Optional[str] = None) -> Dict[str, Any]:
    out = user_brief(user)
    out.update({
        "bio": user.get("bio", ""),
        "cover_photo": user.get("cover_photo", ""),
        "location": user.get("location", ""),
        "website": user.get("website", ""),
        "business_email": user.get("business_email", ""),
        "is_private": bool(user.get("is_private")),
        "followers_count": db.count(user, "followers_count"),
        "following_count": db.count(user, "following_count"),
        "posts_count": db.count(user, "posts_count"),
        "created_at": user.get("created_at"),
    })
    if viewer_id and viewer_id != user["id"]:
        out["is_following"] = viewer_id in db.members(user, "followers")
        out["follows_you"] = viewer_id in db.members(user, "following")
    return db.plain(out)


def private_user(user: Dict[str, Any]) -> Dict[str, Any]:
    out = public_user(user)
    out["email"] = user.get("email")
    out["blocked_users"] = sorted(db.members(user, "blocked_users"))
    out["has_push_token"] = bool(user.get("fcm_token"))
    return out


def is_blocked_between(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    return b["id"] in db.members(a, "blocked_users") or a["id"] in db.members(b, "blocked_users")


def follows(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
    return b["id"] in db.members(a, "following")


def following_ids(user: Dict[str, Any]) -> List[str]:
    return sorted(db.members(user, "following"))


# -----------------------------
# Profile
# -----------------------------
_PROFILE_LIMITS = {
    "full_name": 50,
    "bio": 500,
    "location": 100,
    "website": 200,
}


def update_profile(user: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    sets: Dict[str, Any] = {}
    for field, limit in _PROFILE_LIMITS.items():
        if updates.get(field) is not None:
            sets[field] = optional_text(updates[field], limit=limit, field=field)
    if sets.get("full_name") == "":
        raise Validation("full_name cannot be empty")
    if "full_name" in sets:
        sets["full_name_lc"] = sets["full_name"].lower()
    if updates.get("business_email") is not None:
        raw = updates["business_email"].strip()
        sets["business_email"] = normalize_email(raw) if raw else ""
    if updates.get("is_private") is not None:
        sets["is_private"] = bool(updates["is_private"])
    if not sets:
        return private_user(user)

    sets["updated_at"] = now_ts()
    names = {f"#f{i}": field for i, field in enumerate(sets)}
    vals = {f":v{i}": value for i, value in enumerate(sets.values())}
    expr = "SET " + ", ".join(f"#f{i} = :v{i}" for i in range(len(sets)))
    updated = db.update_item(
        key=key(pk_user(user["id"])),
        update_expr=expr,
        expr_names=names,
        expr_vals=vals,
        condition_expr="attribute_exists(PK)",
    )
    return private_user(updated)


_PHOTO_FIELDS = {
    "profile": ("profile_picture", "profile_picture_id", "profiles"),
    "cover": ("cover_photo", "cover_photo_id", "covers"),
}


def set_photo(user: Dict[str, Any], kind: str, payload: Payload, store: MediaStore) -> Dict[str, Any]:
    if kind not in _PHOTO_FIELDS:
        raise Validation("kind must be 'profile' or 'cover'")
    data, content_type = payload
    if classify(content_type) != IMAGE:
        raise Validation("Profile photos must be images")
    url_attr, id_attr, folder = _PHOTO_FIELDS[kind]
    uploaded = store.upload_image(data, folder, content_type or "image/jpeg")
    try:
        old = db.update_item(
            key=key(pk_user(user["id"])),
            update_expr="SET #u = :u, #i = :i, #ts = :now",
            expr_names={"#u": url_attr, "#i": id_attr, "#ts": "updated_at"},
            expr_vals={":u": uploaded["url"], ":i": uploaded["id"], ":now": now_ts()},
            condition_expr="attribute_exists(PK)",
            return_values="ALL_OLD",
        )
    except Exception:
        store.delete(uploaded["id"])
        raise
    if old.get(id_attr):
        store.delete(old[id_attr])
    fresh = dict(old)
    fresh.update({url_attr: uploaded["url"], id_attr: uploaded["id"]})
    return private_user(fresh)


def set_push_token(user_id: str, token: Optional[str]) -> None:
    if token:
        db.update_item(
            key=key(pk_user(user_id)),
            update_expr="SET #t = :t",
            expr_names={"#t": "fcm_token"},
            expr_vals={":t": token},
            condition_expr="attribute_exists(PK)",
            return_values="NONE",
        )
    else:
        db.update_item(
            key=key(pk_user(user_id)),
            update_expr="REMOVE #t",
            expr_names={"#t": "fcm_token"},
            condition_expr="attribute_exists(PK)",
            return_values="NONE",
        )


# -----------------------------
# Follow graph
# -----------------------------
def _edge_update(
    user_id: str,
    other_id: str,
    *,
    add: Sequence[str] = (),
    remove: Sequence[str] = (),
    block: Optional[str] = None,
    forbid_business: bool = False,
) -> Dict[str, Any]:
    """
    One conditional UpdateItem moving ``other_id`` in or out of the user's
    edge sets. Each set edit carries its counter in the same expression and is
    guarded by a membership condition, so counters track set cardinality.
    """
    names: Dict[str, str] = {}
    vals: Dict[str, Any] = {":o": {other_id}, ":oid": other_id}
    adds: List[str] = []
    deletes: List[str] = []
    conds = ["attribute_exists(PK)"]

    for i, attr in enumerate(add):
        names[f"#a{i}"] = attr
        names[f"#ac{i}"] = _EDGE_COUNTERS[attr]
        adds += [f"#a{i} :o", f"#ac{i} :one"]
        conds.append(f"NOT contains(#a{i}, :oid)")
        vals[":one"] = 1
    for i, attr in enumerate(remove):
        names[f"#r{i}"] = attr
        names[f"#rc{i}"] = _EDGE_COUNTERS[attr]
        deletes.append(f"#r{i} :o")
        adds.append(f"#rc{i} :neg")
        conds.append(f"contains(#r{i}, :oid)")
        vals[":neg"] = -1

    if block:
        names["#bl"] = "blocked_users"
    if block == "add":
        adds.append("#bl :o")
        conds.append("NOT contains(#bl, :oid)")
    elif block == "remove":
        deletes.append("#bl :o")
        conds.append("contains(#bl, :oid)")
    elif block == "guard":
        conds.append("NOT contains(#bl, :oid)")

    if forbid_business:
        names["#at"] = "account_type"
        vals[":biz"] = BUSINESS
        conds.append("#at <> :biz")

    parts = []
    if adds:
        parts.append("ADD " + ", ".join(adds))
    if deletes:
        parts.append("DELETE " + ", ".join(deletes))
    return db.tx_update(
        key=key(pk_user(user_id)),
        update_expr=" ".join(parts),
        expr_names=names,
        expr_vals=vals,
        condition_expr=" AND ".join(conds),
    )


def toggle_follow(actor_id: str, target_id: str, fanout: "Fanout") -> Dict[str, Any]:
    if actor_id == target_id:
        raise Forbidden("You cannot follow yourself")

    for _ in range(_TX_ATTEMPTS):
        actor = require_user(actor_id)
        target = require_user(target_id)
        if actor.get("account_type") == BUSINESS:
            raise Forbidden("Business accounts cannot follow users")
        if is_blocked_between(actor, target):
            raise Forbidden("You cannot follow this user")

        unfollow = follows(actor, target)
        if unfollow:
            actions = [
                _edge_update(actor_id, target_id, remove=("following",)),
                _edge_update(target_id, actor_id, remove=("followers",)),
            ]
        else:
            actions = [
                _edge_update(actor_id, target_id, add=("following",), block="guard", forbid_business=True),
                _edge_update(target_id, actor_id, add=("followers",), block="guard"),
            ]
        try:
            db.transact(actions)
            break
        except Conflict:
            logger.info("follow_retry", actor_id=actor_id, target_id=target_id)
    else:
        raise Conflict("Follow state changed concurrently, please retry")

    FOLLOW_EVENTS.labels(action="unfollow" if unfollow else "follow").inc()
    fresh = require_user(target_id)
    if not unfollow:
        message = f"{actor['username']} started following you"
        fanout.notify(
            recipient=fresh,
            sender=actor,
            type="follow",
            message=message,
            title="New Follower",
            data={"user_id": actor_id},
        )
    return {
        "is_following": not unfollow,
        "followers_count": db.count(fresh, "followers_count"),
        "message": "User unfollowed successfully" if unfollow else "User followed successfully",
    }


def toggle_block(actor_id: str, target_id: str) -> Dict[str, Any]:
    """Block or unblock. Blocking also drops follow edges in both directions."""
    if actor_id == target_id:
        raise Validation("You cannot block yourself")

    for _ in range(_TX_ATTEMPTS):
        actor = require_user(actor_id)
        target = require_user(target_id)
        if target_id in db.members(actor, "blocked_users"):
            blocked = False
            actions = [_edge_update(actor_id, target_id, block="remove")]
        else:
            blocked = True
            actor_drop = [attr for attr in ("following", "followers") if target_id in db.members(actor, attr)]
            target_drop = [attr for attr in ("following", "followers") if actor_id in db.members(target, attr)]
            actions = [_edge_update(actor_id, target_id, remove=actor_drop, block="add")]
            if target_drop:
                actions.append(_edge_update(target_id, actor_id, remove=target_drop))
        try:
            db.transact(actions)
            break
        except Conflict:
            logger.info("block_retry", actor_id=actor_id, target_id=target_id)
    else:
        raise Conflict("Block state changed concurrently, please retry")

    logger.info("block_toggled", actor_id=actor_id, target_id=target_id, blocked=blocked)
    return {"is_blocked": blocked}


def _edge_page(user_id: str, attr: str, page: int, limit: int) -> Page:
    user = require_user(user_id)
    ids = sorted(db.members(user, attr))
    pg = paginate(ids, page, limit)
    loaded = load_users(pg.items)
    briefs = [db.plain(user_brief(loaded[uid])) for uid in pg.items if uid in loaded]
    return Page(briefs, pg.current_page, pg.total_pages, pg.total)


def list_followers(user_id: str, page: int = 1, limit: int = 50) -> Page:
    return _edge_page(user_id, "followers", page, limit)


def list_following(user_id: str, page: int = 1, limit: int = 50) -> Page:
    return _edge_page(user_id, "following", page, limit)


def search(query: str) -> List[Dict[str, Any]]:
    q = (query or "").strip().lower()
    if not q:
        raise Validation("Search query is required")
    # All users share the GSI3 "USERS" partition and matching happens here;
    # reads stop after SEARCH_LIMIT hits, but a rare term walks the whole partition.
    out: List[Dict[str, Any]] = []
    pages = db.query_pages(
        IndexName="GSI3",
        KeyConditionExpression=Key("GSI3PK").eq(USERS_INDEX_PK),
        Limit=SEARCH_PAGE_SIZE,
    )
    for page in pages:
        for it in page:
            if q in it.get("username_lc", "") or q in it.get("full_name_lc", ""):
                out.append(db.plain(user_brief(it)))
                if len(out) >= SEARCH_LIMIT:
                    return out
    return out
