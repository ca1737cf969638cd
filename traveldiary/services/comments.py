from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from boto3.dynamodb.conditions import Key

from traveldiary.core import db
from traveldiary.core.errors import Conflict, Forbidden, NotFound, Validation
from traveldiary.core.keys import gsi_replies, gsi_root_comments, key, new_id, pk_comment, pk_post
from traveldiary.core.logging import get_logger
from traveldiary.core.normalize import required_text
from traveldiary.core.pagination import Page, paginate
from traveldiary.core.time import now_ts
from traveldiary.metrics import COMMENTS_CREATED, REACTIONS
from traveldiary.services import reactions
from traveldiary.services.notifications import Fanout
from traveldiary.services.posts import require_post
from traveldiary.services.users import load_users, user_brief

logger = get_logger(__name__)

MAX_TEXT = 2000
DELETED_TEXT = "[deleted]"
LIST_LIMIT = 20


def render_comment(item: Dict[str, Any], viewer_id: Optional[str], authors: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    author = authors.get(item["author_id"])
    out = {
        "id": item["id"],
        "post_id": item["post_id"],
        "parent_comment_id": item.get("parent_id"),
        "depth": item.get("depth", 0),
        "author": user_brief(author) if author else {"id": item["author_id"]},
        "text": item.get("text", ""),
        "replies_count": db.count(item, "replies_count"),
        "is_edited": bool(item.get("is_edited")),
        "is_deleted": bool(item.get("is_deleted")),
        "created_at": item.get("created_at"),
        "updated_at": item.get("updated_at"),
    }
    out.update(reactions.reaction_view(item, viewer_id))
    return db.plain(out)


def _render_all(items: Sequence[Dict[str, Any]], viewer_id: Optional[str]) -> List[Dict[str, Any]]:
    authors = load_users(it["author_id"] for it in items)
    return [render_comment(it, viewer_id, authors) for it in items]


def get_comment(comment_id: str) -> Optional[Dict[str, Any]]:
    return db.get_item(key(pk_comment(comment_id)))


def require_visible(comment_id: str) -> Dict[str, Any]:
    comment = get_comment(comment_id)
    if not comment or comment.get("is_deleted"):
        raise NotFound("Comment not found")
    return comment


def create_comment(
    actor: Dict[str, Any],
    post_id: str,
    text: str,
    fanout: Fanout,
    parent_comment_id: Optional[str] = None,
) -> Dict[str, Any]:
    text = required_text(text, limit=MAX_TEXT, field="Comment text")
    post = require_post(post_id)
    parent = None
    if parent_comment_id:
        parent = require_visible(parent_comment_id)
        if parent["post_id"] != post_id:
            raise Validation("Parent comment belongs to a different post")

    comment_id = new_id("cmt")
    now = now_ts()
    item = {
        "PK": pk_comment(comment_id),
        "SK": "META",
        "entity": "comment",
        "id": comment_id,
        "post_id": post_id,
        "author_id": actor["id"],
        "parent_id": parent["id"] if parent else None,
        "depth": int(parent.get("depth", 0)) + 1 if parent else 0,
        "text": text,
        "likes_count": 0,
        "dislikes_count": 0,
        "replies_count": 0,
        "is_deleted": False,
        "is_edited": False,
        "created_at": now,
        "updated_at": now,
        "GSI2PK": gsi_replies(parent["id"]) if parent else gsi_root_comments(post_id),
        "GSI2SK": comment_id,
    }
    actions = [
        db.tx_put(item, condition_expr="attribute_not_exists(PK)"),
        db.tx_update(
            key=key(pk_post(post_id)),
            update_expr="ADD #cc :one",
            expr_names={"#cc": "comments_count"},
            expr_vals={":one": 1},
            condition_expr="attribute_exists(PK)",
        ),
    ]
    if parent:
        actions.append(db.tx_update(
            key=key(pk_comment(parent["id"])),
            update_expr="ADD #rc :one",
            expr_names={"#rc": "replies_count", "#del": "is_deleted"},
            expr_vals={":one": 1, ":f": False},
            condition_expr="attribute_exists(PK) AND #del = :f",
        ))
    try:
        db.transact(actions)
    except Conflict as exc:
        if exc.failed_at(1):
            raise NotFound("Post not found") from exc
        if exc.failed_at(2):
            raise NotFound("Parent comment not found") from exc
        raise
    COMMENTS_CREATED.labels(kind="reply" if parent else "root").inc()

    owners = load_users([post["author_id"]] + ([parent["author_id"]] if parent else []))
    post_owner = owners.get(post["author_id"])
    reply_to_post_owner = bool(parent and parent["author_id"] == post["author_id"])
    if post_owner:
        kind = "reply" if reply_to_post_owner else "comment"
        message = (
            f"{actor['username']} replied to your comment"
            if reply_to_post_owner
            else f"{actor['username']} commented on your post"
        )
        fanout.notify(
            recipient=post_owner,
            sender=actor,
            type=kind,
            message=message,
            title="New Reply" if reply_to_post_owner else "New Comment",
            post_id=post_id,
            comment_id=comment_id,
            data={"post_id": post_id, "comment_id": comment_id},
        )
    if parent and not reply_to_post_owner:
        parent_owner = owners.get(parent["author_id"])
        if parent_owner:
            fanout.notify(
                recipient=parent_owner,
                sender=actor,
                type="reply",
                message=f"{actor['username']} replied to your comment",
                title="New Reply",
                post_id=post_id,
                comment_id=comment_id,
                data={"post_id": post_id, "comment_id": comment_id},
            )
    return render_comment(item, actor["id"], {actor["id"]: actor})


def _visible_page(gsi_pk: str, newest_first: bool, viewer_id: Optional[str], page: int, limit: int) -> Page:
    items = db.query_all(
        IndexName="GSI2",
        KeyConditionExpression=Key("GSI2PK").eq(gsi_pk),
        ScanIndexForward=not newest_first,
    )
    visible = [it for it in items if not it.get("is_deleted")]
    pg = paginate(visible, page, limit)
    return Page(_render_all(pg.items, viewer_id), pg.current_page, pg.total_pages, pg.total)


def list_comments(post_id: str, viewer_id: Optional[str], page: int = 1, limit: int = LIST_LIMIT) -> Page:
    require_post(post_id)
    return _visible_page(gsi_root_comments(post_id), True, viewer_id, page, limit)


def list_replies(comment_id: str, viewer_id: Optional[str], page: int = 1, limit: int = LIST_LIMIT) -> Page:
    require_visible(comment_id)
    return _visible_page(gsi_replies(comment_id), False, viewer_id, page, limit)


def edit_comment(actor: Dict[str, Any], comment_id: str, text: str) -> Dict[str, Any]:
    text = required_text(text, limit=MAX_TEXT, field="Comment text")
    comment = require_visible(comment_id)
    if comment["author_id"] != actor["id"]:
        raise Forbidden("You are not authorized to edit this comment")
    try:
        updated = db.update_item(
            key=key(pk_comment(comment_id)),
            update_expr="SET #t = :t, #e = :true, #u = :now",
            expr_names={"#t": "text", "#e": "is_edited", "#u": "updated_at", "#del": "is_deleted"},
            expr_vals={":t": text, ":true": True, ":now": now_ts(), ":f": False},
            condition_expr="attribute_exists(PK) AND #del = :f",
        )
    except Conflict as exc:
        raise NotFound("Comment not found") from exc
    return _render_all([updated], actor["id"])[0]


def react(actor: Dict[str, Any], comment_id: str, kind: str, fanout: Fanout) -> Dict[str, Any]:
    updated, _, after = reactions.toggle(key(pk_comment(comment_id)), actor["id"], kind, missing="Comment not found")
    REACTIONS.labels(target="comment", kind=kind, result=after or "none").inc()
    if after == reactions.LIKE and updated["author_id"] != actor["id"]:
        owner = load_users([updated["author_id"]]).get(updated["author_id"])
        if owner:
            fanout.notify(
                recipient=owner,
                sender=actor,
                type="like",
                message=f"{actor['username']} liked your comment",
                title="New Like",
                post_id=updated["post_id"],
                comment_id=comment_id,
                data={"post_id": updated["post_id"], "comment_id": comment_id},
            )
    return reactions.reaction_view(updated, actor["id"])


def delete_comment(actor: Dict[str, Any], comment_id: str) -> None:
    """
    Soft delete. The post loses exactly one comment and the parent exactly one
    reply; descendants stay in storage and keep their own counters.
    """
    comment = require_visible(comment_id)
    if comment["author_id"] != actor["id"]:
        raise Forbidden("You are not authorized to delete this comment")

    actions = [
        db.tx_update(
            key=key(pk_comment(comment_id)),
            update_expr="SET #del = :true, #t = :placeholder, #u = :now",
            expr_names={"#del": "is_deleted", "#t": "text", "#u": "updated_at"},
            expr_vals={":true": True, ":placeholder": DELETED_TEXT, ":now": now_ts(), ":f": False},
            condition_expr="attribute_exists(PK) AND #del = :f",
        ),
    ]
    if db.get_item(key(pk_post(comment["post_id"]))):
        actions.append(db.tx_update(
            key=key(pk_post(comment["post_id"])),
            update_expr="ADD #cc :neg",
            expr_names={"#cc": "comments_count"},
            expr_vals={":neg": -1},
            condition_expr="attribute_exists(PK)",
        ))
    if comment.get("parent_id"):
        actions.append(db.tx_update(
            key=key(pk_comment(comment["parent_id"])),
            update_expr="ADD #rc :neg",
            expr_names={"#rc": "replies_count"},
            expr_vals={":neg": -1},
            condition_expr="attribute_exists(PK)",
        ))
    try:
        db.transact(actions)
    except Conflict as exc:
        if exc.failed_at(0):
            raise NotFound("Comment not found") from exc
        raise
    logger.info("comment_deleted", comment_id=comment_id, post_id=comment["post_id"])
