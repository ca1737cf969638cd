from __future__ import annotations

from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Key

from traveldiary.clients.media import MediaStore, Payload
from traveldiary.core import db
from traveldiary.core.crypto import sha256_str
from traveldiary.core.errors import Conflict, Forbidden, NotFound, Validation
from traveldiary.core.keys import key, new_id, pk_chat, pk_post, pk_user, sk_chat_ref, sk_message
from traveldiary.core.logging import get_logger
from traveldiary.core.normalize import optional_text
from traveldiary.core.pagination import Page, paginate
from traveldiary.core.time import now_ts
from traveldiary.metrics import MESSAGES_SENT
from traveldiary.services.notifications import Fanout
from traveldiary.services.users import BUSINESS, follows, is_blocked_between, load_users, require_user, user_brief

logger = get_logger(__name__)

MAX_TEXT = 5000
MESSAGES_LIMIT = 50


def chat_id_for(a: str, b: str) -> str:
    """Same id for either ordering of the pair."""
    lo, hi = sorted((a, b))
    return "chat_" + sha256_str(f"{lo}:{hi}")[:32]


def get_chat(chat_id: str) -> Optional[Dict[str, Any]]:
    return db.get_item(key(pk_chat(chat_id)), consistent=True)


def require_participant(chat_id: str, user_id: str) -> Dict[str, Any]:
    chat = get_chat(chat_id)
    if not chat:
        raise NotFound("Chat not found")
    if user_id not in chat.get("participants", []):
        raise Forbidden("You are not a participant of this chat")
    return chat


def _other(chat: Dict[str, Any], user_id: str) -> str:
    return next(p for p in chat["participants"] if p != user_id)


def render_chat(chat: Dict[str, Any], viewer_id: str, users: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    other_id = _other(chat, viewer_id)
    other = users.get(other_id)
    return db.plain({
        "id": chat["id"],
        "participants": chat["participants"],
        "other_user": user_brief(other) if other else {"id": other_id},
        "last_message": chat.get("last_message"),
        "last_message_preview": chat.get("last_message_preview"),
        "last_message_time": chat.get("last_message_time"),
        "unread_count": max(0, int((chat.get("unread") or {}).get(viewer_id, 0))),
        "created_at": chat.get("created_at"),
    })


def render_message(item: Dict[str, Any]) -> Dict[str, Any]:
    return db.plain({
        "id": item["id"],
        "chat_id": item["chat_id"],
        "sender_id": item["sender_id"],
        "type": item["type"],
        "text": item.get("text", ""),
        "media": item.get("media"),
        "shared_post_id": item.get("shared_post_id"),
        "is_read": bool(item.get("is_read")),
        "read_by": [{"user_id": uid, "read_at": ts} for uid, ts in (item.get("read_by") or {}).items()],
        "created_at": item.get("created_at"),
    })


def get_or_create_chat(actor: Dict[str, Any], other_id: str) -> Dict[str, Any]:
    if other_id == actor["id"]:
        raise Validation("You cannot start a chat with yourself")
    other = require_user(other_id)
    if other.get("account_type") == BUSINESS:
        raise Forbidden("Cannot message business accounts, send a business mail instead")
    if is_blocked_between(actor, other):
        raise Forbidden("You cannot message this user")
    if not (follows(actor, other) and follows(other, actor)):
        raise Forbidden("You can only message users who follow each other")

    chat_id = chat_id_for(actor["id"], other_id)
    users = {actor["id"]: actor, other_id: other}
    chat = get_chat(chat_id)
    if chat:
        return render_chat(chat, actor["id"], users)

    now = now_ts()
    participants = sorted((actor["id"], other_id))
    chat = {
        "PK": pk_chat(chat_id),
        "SK": "META",
        "entity": "chat",
        "id": chat_id,
        "participants": participants,
        "unread": {p: 0 for p in participants},
        "last_message": None,
        "last_message_time": now,
        "created_at": now,
    }
    refs = [
        {"PK": pk_user(uid), "SK": sk_chat_ref(chat_id), "entity": "chat_ref", "chat_id": chat_id, "other_id": peer}
        for uid, peer in ((participants[0], participants[1]), (participants[1], participants[0]))
    ]
    try:
        db.transact([
            db.tx_put(chat, condition_expr="attribute_not_exists(PK)"),
            db.tx_put(refs[0]),
            db.tx_put(refs[1]),
        ])
        logger.info("chat_created", chat_id=chat_id)
    except Conflict:
        # another request created the pair's chat first
        chat = get_chat(chat_id)
        if not chat:
            raise
    return render_chat(chat, actor["id"], users)


def list_chats(actor: Dict[str, Any]) -> List[Dict[str, Any]]:
    refs = db.query_all(
        KeyConditionExpression=Key("PK").eq(pk_user(actor["id"])) & Key("SK").begins_with("CHAT#"),
    )
    chats = db.batch_get(key(pk_chat(r["chat_id"])) for r in refs)
    chats.sort(key=lambda c: int(c.get("last_message_time") or 0), reverse=True)
    users = load_users(_other(c, actor["id"]) for c in chats)
    return [render_chat(c, actor["id"], users) for c in chats]


def _preview(kind: str, text: str) -> str:
    if text:
        return text[:100]
    return {"image": "Sent a photo", "video": "Sent a video", "post": "Shared a post"}.get(kind, "Sent a media file")


def send_message(
    actor: Dict[str, Any],
    chat_id: str,
    *,
    text: Optional[str],
    payload: Optional[Payload],
    shared_post_id: Optional[str],
    store: MediaStore,
    fanout: Fanout,
) -> Dict[str, Any]:
    text = optional_text(text, limit=MAX_TEXT, field="Message text")
    if payload and shared_post_id:
        raise Validation("A message can carry either a media file or a shared post, not both")
    if not (text or payload or shared_post_id):
        raise Validation("Message must contain text, media or a shared post")
    chat = require_participant(chat_id, actor["id"])
    other_id = _other(chat, actor["id"])
    if shared_post_id and not db.get_item(key(pk_post(shared_post_id))):
        raise NotFound("Shared post not found")

    media = store.upload_many([payload], f"chats/{chat_id}")[0] if payload else None
    kind = media["type"] if media else ("post" if shared_post_id else "text")
    message_id = new_id("msg")
    now = now_ts()
    item = {
        "PK": pk_chat(chat_id),
        "SK": sk_message(message_id),
        "entity": "message",
        "id": message_id,
        "chat_id": chat_id,
        "sender_id": actor["id"],
        "type": kind,
        "text": text,
        "media": media,
        "shared_post_id": shared_post_id,
        "is_read": False,
        "read_by": {},
        "created_at": now,
    }
    try:
        db.transact([
            db.tx_put(item, condition_expr="attribute_not_exists(PK)"),
            db.tx_update(
                key=key(pk_chat(chat_id)),
                update_expr="SET #lm = :mid, #lp = :preview, #lt = :now, #un.#o = #un.#o + :one",
                expr_names={"#lm": "last_message", "#lp": "last_message_preview", "#lt": "last_message_time", "#un": "unread", "#o": other_id},
                expr_vals={":mid": message_id, ":preview": _preview(kind, text), ":now": now, ":one": 1},
                condition_expr="attribute_exists(PK)",
            ),
        ])
    except Exception:
        if media:
            store.discard([media])
        raise
    MESSAGES_SENT.labels(type=kind).inc()

    other = load_users([other_id]).get(other_id)
    if other:
        fanout.push(
            other.get("fcm_token"),
            actor["username"],
            text or "Sent a media file",
            {"type": "message", "chat_id": chat_id},
        )
    return render_message(item)


def get_messages(actor: Dict[str, Any], chat_id: str, page: int = 1, limit: int = MESSAGES_LIMIT) -> Page:
    """Newest page first; each page is returned in chronological order."""
    require_participant(chat_id, actor["id"])
    items = db.query_all(
        KeyConditionExpression=Key("PK").eq(pk_chat(chat_id)) & Key("SK").begins_with("MSG#"),
        ScanIndexForward=False,
    )
    pg = paginate(items, page, limit)
    rendered = [render_message(it) for it in reversed(pg.items)]
    return Page(rendered, pg.current_page, pg.total_pages, pg.total)


def mark_read(actor: Dict[str, Any], chat_id: str) -> int:
    require_participant(chat_id, actor["id"])
    db.update_item(
        key=key(pk_chat(chat_id)),
        update_expr="SET #un.#u = :zero",
        expr_names={"#un": "unread", "#u": actor["id"]},
        expr_vals={":zero": 0},
        condition_expr="attribute_exists(PK)",
        return_values="NONE",
    )
    items = db.query_all(
        KeyConditionExpression=Key("PK").eq(pk_chat(chat_id)) & Key("SK").begins_with("MSG#"),
    )
    now = now_ts()
    marked = 0
    for it in items:
        if it.get("is_read") or it["sender_id"] == actor["id"]:
            continue
        db.update_item(
            key=key(it["PK"], it["SK"]),
            update_expr="SET #r = :t, #rb.#u = :now",
            expr_names={"#r": "is_read", "#rb": "read_by", "#u": actor["id"]},
            expr_vals={":t": True, ":now": now},
            return_values="NONE",
        )
        marked += 1
    return marked
