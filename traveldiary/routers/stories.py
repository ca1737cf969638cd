from __future__ import annotations

from typing import Optional

import anyio
from fastapi import APIRouter, Depends, File, Form, UploadFile

from traveldiary.auth.deps import get_current_user
from traveldiary.deps import get_media_store, read_payloads
from traveldiary.services import stories as stories_service

router = APIRouter(prefix="/api/stories", tags=["stories"])


@router.post("", status_code=201)
async def create_story(
    media: UploadFile = File(...),
    caption: Optional[str] = Form(default=None),
    user=Depends(get_current_user),
    store=Depends(get_media_store),
):
    payloads = await read_payloads([media])
    story = await anyio.to_thread.run_sync(stories_service.create_story, user, payloads, caption, store)
    return {"success": True, "story": story}


@router.get("/following")
def following_stories(user=Depends(get_current_user)):
    return {"success": True, "stories": stories_service.following_stories(user)}


@router.get("/user/{user_id}")
def user_stories(user_id: str, user=Depends(get_current_user)):
    return {"success": True, "stories": stories_service.user_stories(user_id, user["id"])}


@router.post("/{story_id}/view")
def view_story(story_id: str, user=Depends(get_current_user)):
    result = stories_service.view_story(user, story_id)
    return {"success": True, "message": "Story viewed", **result}


@router.get("/{story_id}/viewers")
def story_viewers(story_id: str, user=Depends(get_current_user)):
    return {"success": True, "viewers": stories_service.story_viewers(user, story_id)}


@router.delete("/{story_id}")
def delete_story(story_id: str, user=Depends(get_current_user), store=Depends(get_media_store)):
    stories_service.delete_story(user, story_id, store)
    return {"success": True, "message": "Story deleted successfully"}
