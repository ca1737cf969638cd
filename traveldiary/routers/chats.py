from __future__ import annotations

from functools import partial
from typing import Optional

import anyio
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from traveldiary.auth.deps import get_current_user
from traveldiary.deps import get_fanout, get_media_store, read_payload
from traveldiary.services import chats as chats_service

router = APIRouter(prefix="/api/chats", tags=["chats"])


@router.get("")
def list_chats(user=Depends(get_current_user)):
    return {"success": True, "chats": chats_service.list_chats(user)}


@router.get("/user/{user_id}")
def get_or_create_chat(user_id: str, user=Depends(get_current_user)):
    return {"success": True, "chat": chats_service.get_or_create_chat(user, user_id)}


@router.post("/{chat_id}/message", status_code=201)
async def send_message(
    chat_id: str,
    text: Optional[str] = Form(default=None),
    shared_post_id: Optional[str] = Form(default=None),
    media: Optional[UploadFile] = File(default=None),
    user=Depends(get_current_user),
    store=Depends(get_media_store),
    fanout=Depends(get_fanout),
):
    payload = await read_payload(media)
    message = await anyio.to_thread.run_sync(partial(
        chats_service.send_message,
        user,
        chat_id,
        text=text,
        payload=payload,
        shared_post_id=shared_post_id,
        store=store,
        fanout=fanout,
    ))
    return {"success": True, "message": message}


@router.get("/{chat_id}/messages")
def get_messages(
    chat_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=chats_service.MESSAGES_LIMIT, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg = chats_service.get_messages(user, chat_id, page, limit)
    return {"success": True, "messages": pg.items, **pg.meta("total_messages")}


@router.post("/{chat_id}/read")
def mark_read(chat_id: str, user=Depends(get_current_user)):
    marked = chats_service.mark_read(user, chat_id)
    return {"success": True, "marked": marked}
