from __future__ import annotations

from functools import partial
from typing import List, Optional

import anyio
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from traveldiary.auth.deps import get_current_user
from traveldiary.deps import get_fanout, get_media_store, read_payloads
from traveldiary.services import posts as posts_service
from traveldiary.services.reactions import DISLIKE, LIKE

router = APIRouter(prefix="/api/posts", tags=["posts"])


@router.post("", status_code=201)
async def create_post(
    media: List[UploadFile] = File(...),
    caption: Optional[str] = Form(default=None),
    post_type: str = Form(default="image"),
    location: Optional[str] = Form(default=None),
    tags: Optional[str] = Form(default=None),
    user=Depends(get_current_user),
    store=Depends(get_media_store),
    fanout=Depends(get_fanout),
):
    payloads = await read_payloads(media)
    post = await anyio.to_thread.run_sync(partial(
        posts_service.create_post,
        user,
        payloads,
        caption=caption,
        post_type=post_type,
        location=location,
        tags=tags,
        store=store,
        fanout=fanout,
    ))
    return {"success": True, "post": post}


@router.get("/feed")
def feed(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=posts_service.FEED_LIMIT, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg = posts_service.feed(user, page, limit)
    return {"success": True, "posts": pg.items, **pg.meta("total_posts")}


@router.get("/user/{user_id}")
def user_posts(
    user_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=posts_service.USER_POSTS_LIMIT, ge=1, le=100),
    post_type: Optional[str] = Query(default=None),
    user=Depends(get_current_user),
):
    pg = posts_service.user_posts(user_id, user["id"], page, limit, post_type)
    return {"success": True, "posts": pg.items, **pg.meta("total_posts")}


@router.get("/{post_id}")
def get_post(post_id: str, user=Depends(get_current_user)):
    return {"success": True, "post": posts_service.get_post(post_id, user["id"])}


@router.post("/{post_id}/like")
def like_post(post_id: str, user=Depends(get_current_user), fanout=Depends(get_fanout)):
    return {"success": True, **posts_service.react(user, post_id, LIKE, fanout)}


@router.post("/{post_id}/dislike")
def dislike_post(post_id: str, user=Depends(get_current_user), fanout=Depends(get_fanout)):
    return {"success": True, **posts_service.react(user, post_id, DISLIKE, fanout)}


@router.post("/{post_id}/share")
def share_post(post_id: str, user=Depends(get_current_user)):
    return {"success": True, "shares_count": posts_service.share_post(post_id)}


@router.delete("/{post_id}")
def delete_post(post_id: str, user=Depends(get_current_user), store=Depends(get_media_store)):
    posts_service.delete_post(user, post_id, store)
    return {"success": True, "message": "Post deleted successfully"}
