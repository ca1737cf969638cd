from __future__ import annotations

from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Key

from traveldiary.clients.media import MediaStore, Payload
from traveldiary.core import db
from traveldiary.core.errors import Conflict, Forbidden, NotFound, Validation
from traveldiary.core.keys import gsi_user_stories, key, new_id, pk_story
from traveldiary.core.logging import get_logger
from traveldiary.core.normalize import optional_text
from traveldiary.core.settings import S
from traveldiary.core.time import now_ts
from traveldiary.metrics import STORY_VIEWS
from traveldiary.services.ttl import with_ttl
from traveldiary.services.users import following_ids, load_users, require_user, user_brief

logger = get_logger(__name__)


def _live(item: Optional[Dict[str, Any]], now: int) -> bool:
    return bool(item) and int(item.get("expires_at", 0)) > now


def render_story(item: Dict[str, Any], viewer_id: Optional[str]) -> Dict[str, Any]:
    return db.plain({
        "id": item["id"],
        "author_id": item["author_id"],
        "media": item.get("media"),
        "caption": item.get("caption", ""),
        "views_count": db.count(item, "views_count"),
        "has_viewed": bool(viewer_id) and viewer_id in db.members(item, "viewers"),
        "created_at": item.get("created_at"),
        "expires_at": item.get("expires_at"),
    })


def require_live(story_id: str) -> Dict[str, Any]:
    story = db.get_item(key(pk_story(story_id)))
    if not _live(story, now_ts()):
        raise NotFound("Story not found or expired")
    return story


def create_story(author: Dict[str, Any], payloads: List[Payload], caption: Optional[str], store: MediaStore) -> Dict[str, Any]:
    if len(payloads) != 1:
        raise Validation("A story needs exactly one media file")
    caption = optional_text(caption, limit=500, field="caption")
    media = store.upload_many(payloads, f"stories/{author['id']}")[0]

    story_id = new_id("sty")
    now = now_ts()
    expires_at = now + S.story_ttl_hours * 3600
    item = with_ttl({
        "PK": pk_story(story_id),
        "SK": "META",
        "entity": "story",
        "id": story_id,
        "author_id": author["id"],
        "media": media,
        "caption": caption,
        "views_count": 0,
        "viewed_at": {},
        "created_at": now,
        "expires_at": expires_at,
        "GSI1PK": gsi_user_stories(author["id"]),
        "GSI1SK": story_id,
    }, expires_at)
    try:
        db.put_item(item, condition_expr="attribute_not_exists(PK)")
    except Exception:
        store.discard([media])
        raise
    logger.info("story_created", story_id=story_id, author_id=author["id"])
    return render_story(item, author["id"])


def _live_stories(author_id: str, now: int) -> List[Dict[str, Any]]:
    items = db.query_all(
        IndexName="GSI1",
        KeyConditionExpression=Key("GSI1PK").eq(gsi_user_stories(author_id)),
        ScanIndexForward=False,
    )
    return [it for it in items if _live(it, now)]


def following_stories(viewer: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Non-expired stories of the viewer and followed users, grouped per author, freshest group first."""
    now = now_ts()
    groups = []
    for author_id in [viewer["id"]] + following_ids(viewer):
        stories = _live_stories(author_id, now)
        if stories:
            groups.append((author_id, stories))
    groups.sort(key=lambda g: g[1][0]["GSI1SK"], reverse=True)
    authors = load_users(a for a, _ in groups)
    out = []
    for author_id, stories in groups:
        if author_id not in authors:
            continue
        out.append({
            "user": db.plain(user_brief(authors[author_id])),
            "stories": [render_story(s, viewer["id"]) for s in stories],
        })
    return out


def user_stories(user_id: str, viewer_id: str) -> List[Dict[str, Any]]:
    require_user(user_id)
    return [render_story(s, viewer_id) for s in _live_stories(user_id, now_ts())]


def view_story(viewer: Dict[str, Any], story_id: str) -> Dict[str, Any]:
    """Record a view once per viewer; repeated views leave the story untouched."""
    now = now_ts()
    try:
        updated = db.update_item(
            key=key(pk_story(story_id)),
            update_expr="SET #va.#u = :now ADD #v :us, #vc :one",
            expr_names={"#va": "viewed_at", "#u": viewer["id"], "#v": "viewers", "#vc": "views_count", "#exp": "expires_at"},
            expr_vals={":now": now, ":us": {viewer["id"]}, ":uid": viewer["id"], ":one": 1},
            condition_expr="attribute_exists(PK) AND #exp > :now AND NOT contains(#v, :uid)",
        )
    except Conflict:
        story = require_live(story_id)
        return {"views_count": db.count(story, "views_count"), "already_viewed": True}
    STORY_VIEWS.inc()
    return {"views_count": db.count(updated, "views_count"), "already_viewed": False}


def story_viewers(owner: Dict[str, Any], story_id: str) -> List[Dict[str, Any]]:
    story = require_live(story_id)
    if story["author_id"] != owner["id"]:
        raise Forbidden("You can only view viewers of your own stories")
    viewed_at = story.get("viewed_at") or {}
    users = load_users(db.members(story, "viewers"))
    out = []
    for uid, user in users.items():
        out.append({"user": user_brief(user), "viewed_at": viewed_at.get(uid)})
    out.sort(key=lambda v: v["viewed_at"] or 0, reverse=True)
    return db.plain(out)


def delete_story(owner: Dict[str, Any], story_id: str, store: MediaStore) -> None:
    story = db.get_item(key(pk_story(story_id)))
    if not story:
        raise NotFound("Story not found")
    if story["author_id"] != owner["id"]:
        raise Forbidden("You are not authorized to delete this story")
    media = story.get("media") or {}
    store.delete(media.get("id", ""))
    db.delete_item(key(pk_story(story_id)))
    logger.info("story_deleted", story_id=story_id)
