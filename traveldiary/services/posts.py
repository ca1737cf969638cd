from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from boto3.dynamodb.conditions import Key

from traveldiary.clients.media import MediaStore, Payload
from traveldiary.core import db
from traveldiary.core.errors import Conflict, Forbidden, NotFound, Validation
from traveldiary.core.keys import gsi_author_posts, key, new_id, pk_post, pk_user
from traveldiary.core.logging import get_logger
from traveldiary.core.normalize import normalize_tags, optional_text
from traveldiary.core.pagination import Page, paginate
from traveldiary.core.settings import S
from traveldiary.core.time import now_ts
from traveldiary.metrics import POSTS_CREATED, REACTIONS
from traveldiary.services import reactions
from traveldiary.services.notifications import Fanout
from traveldiary.services.users import following_ids, load_users, require_user, user_brief

logger = get_logger(__name__)

POST_TYPES = ("image", "video", "short")
FEED_LIMIT = 10
USER_POSTS_LIMIT = 12


def render_post(item: Dict[str, Any], viewer_id: Optional[str], authors: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    author = authors.get(item["author_id"])
    out = {
        "id": item["id"],
        "author": user_brief(author) if author else {"id": item["author_id"]},
        "media": item.get("media", []),
        "caption": item.get("caption", ""),
        "post_type": item.get("post_type", "image"),
        "location": item.get("location", ""),
        "tags": item.get("tags", []),
        "comments_count": db.count(item, "comments_count"),
        "views_count": db.count(item, "views_count"),
        "shares_count": db.count(item, "shares_count"),
        "created_at": item.get("created_at"),
    }
    out.update(reactions.reaction_view(item, viewer_id))
    return db.plain(out)


def _render_all(items: Sequence[Dict[str, Any]], viewer_id: Optional[str]) -> List[Dict[str, Any]]:
    authors = load_users(it["author_id"] for it in items)
    return [render_post(it, viewer_id, authors) for it in items]


def require_post(post_id: str) -> Dict[str, Any]:
    post = db.get_item(key(pk_post(post_id)))
    if not post:
        raise NotFound("Post not found")
    return post


def create_post(
    author: Dict[str, Any],
    payloads: Sequence[Payload],
    *,
    caption: Optional[str],
    post_type: str,
    location: Optional[str],
    tags: Optional[str],
    store: MediaStore,
    fanout: Fanout,
) -> Dict[str, Any]:
    if not payloads:
        raise Validation("Please upload at least one media file")
    if len(payloads) > S.max_post_media:
        raise Validation(f"A post can carry at most {S.max_post_media} media files")
    post_type = post_type or "image"
    if post_type not in POST_TYPES:
        raise Validation("post_type must be one of image, video, short")
    caption = optional_text(caption, limit=2200, field="caption")
    location = optional_text(location, limit=100, field="location")

    post_id = new_id("pst")
    media = store.upload_many(payloads, f"posts/{author['id']}")
    now = now_ts()
    item = {
        "PK": pk_post(post_id),
        "SK": "META",
        "entity": "post",
        "id": post_id,
        "author_id": author["id"],
        "media": media,
        "caption": caption,
        "post_type": post_type,
        "location": location,
        "tags": normalize_tags(tags),
        "likes_count": 0,
        "dislikes_count": 0,
        "comments_count": 0,
        "views_count": 0,
        "shares_count": 0,
        "created_at": now,
        "GSI1PK": gsi_author_posts(author["id"]),
        "GSI1SK": post_id,
    }
    try:
        db.transact([
            db.tx_put(item, condition_expr="attribute_not_exists(PK)"),
            db.tx_update(
                key=key(pk_user(author["id"])),
                update_expr="ADD #pc :one",
                expr_names={"#pc": "posts_count"},
                expr_vals={":one": 1},
                condition_expr="attribute_exists(PK)",
            ),
        ])
    except Exception:
        store.discard(media)
        raise
    POSTS_CREATED.inc()
    logger.info("post_created", post_id=post_id, author_id=author["id"], media=len(media))

    followers = load_users(db.members(author, "followers"))
    fanout.multicast(
        [u.get("fcm_token") for u in followers.values()],
        "New Post",
        f"{author['username']} shared a new post",
        {"type": "post", "post_id": post_id},
    )
    return render_post(item, author["id"], {author["id"]: author})


def _author_posts(user_id: str) -> List[Dict[str, Any]]:
    return db.query_all(
        IndexName="GSI1",
        KeyConditionExpression=Key("GSI1PK").eq(gsi_author_posts(user_id)),
        ScanIndexForward=False,
    )


def feed(viewer: Dict[str, Any], page: int = 1, limit: int = FEED_LIMIT) -> Page:
    """Posts by the viewer and everyone they follow, newest first."""
    items: List[Dict[str, Any]] = []
    for author_id in [viewer["id"]] + following_ids(viewer):
        items.extend(_author_posts(author_id))
    items.sort(key=lambda it: it["GSI1SK"], reverse=True)
    pg = paginate(items, page, limit)
    return Page(_render_all(pg.items, viewer["id"]), pg.current_page, pg.total_pages, pg.total)


def user_posts(
    user_id: str,
    viewer_id: Optional[str],
    page: int = 1,
    limit: int = USER_POSTS_LIMIT,
    post_type: Optional[str] = None,
) -> Page:
    require_user(user_id)
    if post_type and post_type not in POST_TYPES:
        raise Validation("post_type must be one of image, video, short")
    items = _author_posts(user_id)
    if post_type:
        items = [it for it in items if it.get("post_type") == post_type]
    pg = paginate(items, page, limit)
    return Page(_render_all(pg.items, viewer_id), pg.current_page, pg.total_pages, pg.total)


def _bump(post_id: str, counter: str) -> Dict[str, Any]:
    try:
        return db.update_item(
            key=key(pk_post(post_id)),
            update_expr="ADD #c :one",
            expr_names={"#c": counter},
            expr_vals={":one": 1},
            condition_expr="attribute_exists(PK)",
        )
    except Conflict as exc:
        raise NotFound("Post not found") from exc


def get_post(post_id: str, viewer_id: str) -> Dict[str, Any]:
    """Every read counts as a view; views are not de-duplicated per viewer."""
    item = _bump(post_id, "views_count")
    return _render_all([item], viewer_id)[0]


def share_post(post_id: str) -> int:
    item = _bump(post_id, "shares_count")
    return db.count(item, "shares_count")


def react(actor: Dict[str, Any], post_id: str, kind: str, fanout: Fanout) -> Dict[str, Any]:
    updated, _, after = reactions.toggle(key(pk_post(post_id)), actor["id"], kind, missing="Post not found")
    REACTIONS.labels(target="post", kind=kind, result=after or "none").inc()
    if after == reactions.LIKE and updated["author_id"] != actor["id"]:
        owner = load_users([updated["author_id"]]).get(updated["author_id"])
        if owner:
            fanout.notify(
                recipient=owner,
                sender=actor,
                type="like",
                message=f"{actor['username']} liked your post",
                title="New Like",
                post_id=post_id,
                data={"post_id": post_id},
            )
    return reactions.reaction_view(updated, actor["id"])


def delete_post(actor: Dict[str, Any], post_id: str, store: MediaStore) -> None:
    post = require_post(post_id)
    if post["author_id"] != actor["id"]:
        raise Forbidden("You are not authorized to delete this post")
    for m in post.get("media", []):
        store.delete(m.get("id", ""))
    try:
        db.transact([
            db.tx_delete(key(pk_post(post_id)), condition_expr="attribute_exists(PK)"),
            db.tx_update(
                key=key(pk_user(actor["id"])),
                update_expr="ADD #pc :neg",
                expr_names={"#pc": "posts_count"},
                expr_vals={":neg": -1, ":zero": 0},
                condition_expr="attribute_exists(PK) AND #pc > :zero",
            ),
        ])
    except Conflict as exc:
        if exc.failed_at(0):
            raise NotFound("Post not found") from exc
        db.delete_item(key(pk_post(post_id)))
    logger.info("post_deleted", post_id=post_id, author_id=actor["id"])
