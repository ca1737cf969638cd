from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Key

from traveldiary.core import db
from traveldiary.core.errors import Conflict, Forbidden, NotFound, Validation
from traveldiary.core.keys import gsi_inbox, gsi_mail_thread, gsi_sent, key, new_id, pk_mail
from traveldiary.core.logging import get_logger
from traveldiary.core.normalize import required_text
from traveldiary.core.pagination import Page, paginate
from traveldiary.core.time import now_ts
from traveldiary.metrics import MAILS_SENT
from traveldiary.services.notifications import Fanout
from traveldiary.services.users import BUSINESS, is_blocked_between, load_users, require_user, user_brief

logger = get_logger(__name__)

MAX_SUBJECT = 200
MAX_MESSAGE = 10000
LIST_LIMIT = 20
REPLY_PREFIX = "Re: "


def reply_subject(subject: str) -> str:
    if subject.startswith(REPLY_PREFIX):
        return subject
    return (REPLY_PREFIX + subject)[:MAX_SUBJECT]


def render_mail(item: Dict[str, Any], users: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    sender = users.get(item["sender_id"])
    recipient = users.get(item["recipient_id"])
    return db.plain({
        "id": item["id"],
        "sender": user_brief(sender) if sender else {"id": item["sender_id"]},
        "recipient": user_brief(recipient) if recipient else {"id": item["recipient_id"]},
        "subject": item["subject"],
        "message": item["message"],
        "is_read": bool(item.get("is_read")),
        "replied": bool(item.get("replied")),
        "parent_mail_id": item.get("parent_id"),
        "created_at": item.get("created_at"),
    })


def _render_all(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    users = load_users([it["sender_id"] for it in items] + [it["recipient_id"] for it in items])
    return [render_mail(it, users) for it in items]


def require_mail(mail_id: str) -> Dict[str, Any]:
    mail = db.get_item(key(pk_mail(mail_id)))
    if not mail:
        raise NotFound("Mail not found")
    return mail


def _mail_item(
    *,
    sender_id: str,
    recipient_id: str,
    subject: str,
    message: str,
    parent_id: Optional[str] = None,
) -> Dict[str, Any]:
    mail_id = new_id("mail")
    item = {
        "PK": pk_mail(mail_id),
        "SK": "META",
        "entity": "mail",
        "id": mail_id,
        "sender_id": sender_id,
        "recipient_id": recipient_id,
        "subject": subject,
        "message": message,
        "is_read": False,
        "replied": False,
        "parent_id": parent_id,
        "created_at": now_ts(),
        "GSI1PK": gsi_inbox(recipient_id),
        "GSI1SK": mail_id,
        "GSI2PK": gsi_sent(sender_id),
        "GSI2SK": mail_id,
    }
    if parent_id:
        item["GSI3PK"] = gsi_mail_thread(parent_id)
        item["GSI3SK"] = mail_id
    return item


def send_mail(actor: Dict[str, Any], recipient_id: str, subject: str, message: str, fanout: Fanout) -> Dict[str, Any]:
    subject = required_text(subject, limit=MAX_SUBJECT, field="Subject")
    message = required_text(message, limit=MAX_MESSAGE, field="Message")
    if recipient_id == actor["id"]:
        raise Validation("You cannot send mail to yourself")
    recipient = require_user(recipient_id)
    if recipient.get("account_type") != BUSINESS:
        raise Forbidden("Mail can only be sent to business accounts")
    if is_blocked_between(actor, recipient):
        raise Forbidden("You cannot send mail to this user")

    item = _mail_item(sender_id=actor["id"], recipient_id=recipient_id, subject=subject, message=message)
    db.put_item(item, condition_expr="attribute_not_exists(PK)")
    MAILS_SENT.labels(kind="new").inc()
    logger.info("mail_sent", mail_id=item["id"], recipient_id=recipient_id)
    fanout.push(
        recipient.get("fcm_token"),
        "New Business Inquiry",
        f"{actor['username']}: {subject}",
        {"type": "mail", "mail_id": item["id"]},
    )
    return render_mail(item, {actor["id"]: actor, recipient_id: recipient})


def reply_mail(actor: Dict[str, Any], mail_id: str, message: str, fanout: Fanout) -> Dict[str, Any]:
    """
    Reply to a mail the actor received. Replies hang off the thread root so a
    thread stays one level deep; the mail replied to is flagged ``replied``.
    """
    message = required_text(message, limit=MAX_MESSAGE, field="Message")
    parent = require_mail(mail_id)
    if parent["recipient_id"] != actor["id"]:
        raise Forbidden("You can only reply to mail you received")
    root_id = parent.get("parent_id") or parent["id"]

    item = _mail_item(
        sender_id=actor["id"],
        recipient_id=parent["sender_id"],
        subject=reply_subject(parent["subject"]),
        message=message,
        parent_id=root_id,
    )
    try:
        db.transact([
            db.tx_put(item, condition_expr="attribute_not_exists(PK)"),
            db.tx_update(
                key=key(pk_mail(mail_id)),
                update_expr="SET #r = :t",
                expr_names={"#r": "replied"},
                expr_vals={":t": True},
                condition_expr="attribute_exists(PK)",
            ),
        ])
    except Conflict as exc:
        if exc.failed_at(1):
            raise NotFound("Mail not found") from exc
        raise
    MAILS_SENT.labels(kind="reply").inc()

    users = load_users([parent["sender_id"]])
    users[actor["id"]] = actor
    original_sender = users.get(parent["sender_id"])
    if original_sender:
        fanout.push(
            original_sender.get("fcm_token"),
            "Mail Reply",
            f"{actor['username']} replied to your inquiry",
            {"type": "mail", "mail_id": item["id"]},
        )
    return render_mail(item, users)


def _listing(index: str, gsi_pk: str, page: int, limit: int) -> Tuple[List[Dict[str, Any]], Page]:
    items = db.query_all(
        IndexName=index,
        KeyConditionExpression=Key(f"{index}PK").eq(gsi_pk),
        ScanIndexForward=False,
    )
    pg = paginate(items, page, limit)
    return items, Page(_render_all(pg.items), pg.current_page, pg.total_pages, pg.total)


def inbox(actor: Dict[str, Any], page: int = 1, limit: int = LIST_LIMIT) -> Tuple[Page, int]:
    items, pg = _listing("GSI1", gsi_inbox(actor["id"]), page, limit)
    return pg, sum(1 for it in items if not it.get("is_read"))


def sent(actor: Dict[str, Any], page: int = 1, limit: int = LIST_LIMIT) -> Page:
    _, pg = _listing("GSI2", gsi_sent(actor["id"]), page, limit)
    return pg


def thread(actor: Dict[str, Any], mail_id: str) -> List[Dict[str, Any]]:
    """Root mail followed by its replies, oldest first. Opening marks the root read for its recipient."""
    mail = require_mail(mail_id)
    root = mail
    if mail.get("parent_id"):
        root = db.get_item(key(pk_mail(mail["parent_id"]))) or mail
    if actor["id"] not in (root["sender_id"], root["recipient_id"]):
        raise Forbidden("You are not part of this conversation")

    if root["recipient_id"] == actor["id"] and not root.get("is_read"):
        root = db.update_item(
            key=key(pk_mail(root["id"])),
            update_expr="SET #r = :t",
            expr_names={"#r": "is_read"},
            expr_vals={":t": True},
            condition_expr="attribute_exists(PK)",
        )
    replies = db.query_all(
        IndexName="GSI3",
        KeyConditionExpression=Key("GSI3PK").eq(gsi_mail_thread(root["id"])),
        ScanIndexForward=True,
    )
    return _render_all([root] + replies)


def mark_read(actor: Dict[str, Any], mail_id: str) -> None:
    mail = require_mail(mail_id)
    if mail["recipient_id"] != actor["id"]:
        raise Forbidden("Only the recipient can mark mail as read")
    db.update_item(
        key=key(pk_mail(mail_id)),
        update_expr="SET #r = :t",
        expr_names={"#r": "is_read"},
        expr_vals={":t": True},
        condition_expr="attribute_exists(PK)",
        return_values="NONE",
    )


def delete_mail(actor: Dict[str, Any], mail_id: str) -> None:
    mail = require_mail(mail_id)
    if actor["id"] not in (mail["sender_id"], mail["recipient_id"]):
        raise Forbidden("You are not authorized to delete this mail")
    db.delete_item(key(pk_mail(mail_id)))
    logger.info("mail_deleted", mail_id=mail_id)
