from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from boto3.dynamodb.conditions import Key
from fastapi import BackgroundTasks

from traveldiary.clients.push import PushDispatcher
from traveldiary.core import db
from traveldiary.core.errors import Conflict, NotFound, Validation
from traveldiary.core.keys import key, new_id, pk_notif, pk_user, sk_notif
from traveldiary.core.logging import get_logger
from traveldiary.core.pagination import Page, paginate
from traveldiary.core.settings import S
from traveldiary.core.time import now_ts
from traveldiary.metrics import NOTIFICATIONS_CREATED, record_push
from traveldiary.services.ttl import is_live, with_ttl
from traveldiary.services.users import user_brief

logger = get_logger(__name__)

TYPES = ("follow", "like", "dislike", "comment", "reply", "mention", "share", "story_view")


def _check_type(type: str) -> None:
    if type not in TYPES:
        raise Validation(f"Unknown notification type: {type}")


def create_notification(
    *,
    recipient_id: str,
    sender_id: str,
    type: str,
    message: str,
    post_id: Optional[str] = None,
    comment_id: Optional[str] = None,
    story_id: Optional[str] = None,
) -> Dict[str, Any]:
    _check_type(type)
    now = now_ts()
    nid = new_id("ntf")
    item = {
        "PK": pk_notif(recipient_id),
        "SK": sk_notif(nid),
        "entity": "notification",
        "id": nid,
        "recipient_id": recipient_id,
        "sender_id": sender_id,
        "type": type,
        "message": message,
        "is_read": False,
        "created_at": now,
    }
    for attr, value in (("post_id", post_id), ("comment_id", comment_id), ("story_id", story_id)):
        if value:
            item[attr] = value
    db.put_item(with_ttl(item, now + S.notification_ttl_days * 86400))
    NOTIFICATIONS_CREATED.labels(type=type).inc()
    return item


class Fanout:
    """
    Writes notification records inline; push delivery runs as a background
    task after the response. Failures of either are logged, never raised.
    """

    def __init__(self, push: PushDispatcher, tasks: Optional[BackgroundTasks] = None):
        self._push = push
        self._tasks = tasks

    def notify(
        self,
        *,
        recipient: Dict[str, Any],
        sender: Dict[str, Any],
        type: str,
        message: str,
        title: str,
        post_id: Optional[str] = None,
        comment_id: Optional[str] = None,
        story_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        if recipient["id"] == sender["id"]:
            return None
        _check_type(type)
        try:
            item = create_notification(
                recipient_id=recipient["id"],
                sender_id=sender["id"],
                type=type,
                message=message,
                post_id=post_id,
                comment_id=comment_id,
                story_id=story_id,
            )
        except Exception:
            # the triggering write has already committed
            logger.exception("notification_write_failed", type=type, recipient_id=recipient["id"])
            item = None
        payload: Dict[str, Any] = {"type": type}
        if item:
            payload["notification_id"] = item["id"]
        payload.update(data or {})
        self.push(recipient.get("fcm_token"), title, message, payload)
        return item

    def push(self, token: Optional[str], title: str, body: str, data: Optional[Dict[str, Any]] = None) -> None:
        if not token:
            return
        self._schedule(self._deliver, token, title, body, data)

    def multicast(self, tokens: Sequence[str], title: str, body: str, data: Optional[Dict[str, Any]] = None) -> None:
        tokens = [t for t in tokens if t]
        if not tokens:
            return
        self._schedule(self._deliver_many, tokens, title, body, data)

    def _schedule(self, fn, *args) -> None:
        if self._tasks is not None:
            self._tasks.add_task(fn, *args)
        else:
            fn(*args)

    def _deliver(self, token: str, title: str, body: str, data: Optional[Dict[str, Any]]) -> None:
        try:
            result = self._push.send(token, title, body, data)
        except Exception:
            logger.exception("push_delivery_failed", title=title)
            record_push(False)
            return
        record_push(bool(result.get("success")))
        if not result.get("success"):
            logger.info("push_not_delivered", error=result.get("error"))

    def _deliver_many(self, tokens: List[str], title: str, body: str, data: Optional[Dict[str, Any]]) -> None:
        try:
            result = self._push.send_multicast(tokens, title, body, data)
        except Exception:
            logger.exception("push_multicast_failed", title=title, tokens=len(tokens))
            for _ in tokens:
                record_push(False)
            return
        ok = int(result.get("success_count", 0))
        for i in range(len(tokens)):
            record_push(i < ok)
        logger.info("push_multicast_sent", tokens=len(tokens), success_count=ok)


# -----------------------------
# Inbox
# -----------------------------
def _live_notifications(user_id: str) -> List[Dict[str, Any]]:
    now = now_ts()
    items = db.query_all(
        KeyConditionExpression=Key("PK").eq(pk_notif(user_id)) & Key("SK").begins_with("N#"),
        ScanIndexForward=False,
    )
    return [it for it in items if is_live(it, now)]


def render_notification(item: Dict[str, Any], senders: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    sender = senders.get(item.get("sender_id"))
    out = {
        "id": item["id"],
        "type": item["type"],
        "message": item.get("message", ""),
        "is_read": bool(item.get("is_read")),
        "created_at": item.get("created_at"),
        "sender": user_brief(sender) if sender else None,
    }
    for attr in ("post_id", "comment_id", "story_id"):
        out[attr] = item.get(attr)
    return db.plain(out)


def list_notifications(user_id: str, page: int = 1, limit: int = 20) -> Tuple[Page, int]:
    items = _live_notifications(user_id)
    unread = sum(1 for it in items if not it.get("is_read"))
    pg = paginate(items, page, limit)
    sender_ids = {it["sender_id"] for it in pg.items if it.get("sender_id")}
    senders = {u["id"]: u for u in db.batch_get(key(pk_user(uid)) for uid in sender_ids)}
    rendered = [render_notification(it, senders) for it in pg.items]
    return Page(rendered, pg.current_page, pg.total_pages, pg.total), unread


def mark_read(user_id: str, notification_id: str) -> None:
    try:
        db.update_item(
            key=key(pk_notif(user_id), sk_notif(notification_id)),
            update_expr="SET #r = :t",
            expr_names={"#r": "is_read"},
            expr_vals={":t": True},
            condition_expr="attribute_exists(PK)",
            return_values="NONE",
        )
    except Conflict as exc:
        raise NotFound("Notification not found") from exc


def mark_all_read(user_id: str) -> int:
    n = 0
    for it in _live_notifications(user_id):
        if it.get("is_read"):
            continue
        db.update_item(
            key=key(it["PK"], it["SK"]),
            update_expr="SET #r = :t",
            expr_names={"#r": "is_read"},
            expr_vals={":t": True},
            return_values="NONE",
        )
        n += 1
    return n


def delete_notification(user_id: str, notification_id: str) -> None:
    try:
        db.delete_item(key(pk_notif(user_id), sk_notif(notification_id)), condition_expr="attribute_exists(PK)")
    except Conflict as exc:
        raise NotFound("Notification not found") from exc
