from __future__ import annotations

import anyio
from fastapi import APIRouter, Depends, File, Query, UploadFile

from traveldiary.auth.deps import get_current_user
from traveldiary.deps import get_fanout, get_media_store, read_payload
from traveldiary.models import ProfileUpdateReq
from traveldiary.services import users as users_service

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/search")
def search_users(query: str = Query(default=""), user=Depends(get_current_user)):
    return {"success": True, "users": users_service.search(query)}


@router.get("/profile/{user_id}")
def get_profile(user_id: str, user=Depends(get_current_user)):
    target = users_service.require_user(user_id)
    return {"success": True, "user": users_service.public_user(target, viewer_id=user["id"])}


@router.put("/profile")
def update_profile(body: ProfileUpdateReq, user=Depends(get_current_user)):
    updated = users_service.update_profile(user, body.model_dump(exclude_unset=True))
    return {"success": True, "user": updated}


@router.post("/profile/photo/{kind}")
async def upload_photo(
    kind: str,
    file: UploadFile = File(...),
    user=Depends(get_current_user),
    store=Depends(get_media_store),
):
    payload = await read_payload(file)
    updated = await anyio.to_thread.run_sync(users_service.set_photo, user, kind, payload, store)
    return {"success": True, "user": updated}


@router.post("/follow/{user_id}")
def follow(user_id: str, user=Depends(get_current_user), fanout=Depends(get_fanout)):
    result = users_service.toggle_follow(user["id"], user_id, fanout)
    return {"success": True, **result}


@router.post("/block/{user_id}")
def block(user_id: str, user=Depends(get_current_user)):
    return {"success": True, **users_service.toggle_block(user["id"], user_id)}


@router.get("/{user_id}/followers")
def followers(
    user_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg = users_service.list_followers(user_id, page, limit)
    return {"success": True, "followers": pg.items, **pg.meta()}


@router.get("/{user_id}/following")
def following(
    user_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg = users_service.list_following(user_id, page, limit)
    return {"success": True, "following": pg.items, **pg.meta()}
