from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from traveldiary.auth.deps import get_current_user
from traveldiary.deps import get_fanout
from traveldiary.models import CommentCreateReq, CommentEditReq
from traveldiary.services import comments as comments_service
from traveldiary.services.reactions import DISLIKE, LIKE

router = APIRouter(prefix="/api/comments", tags=["comments"])


@router.post("/post/{post_id}", status_code=201)
def create_comment(
    post_id: str,
    body: CommentCreateReq,
    user=Depends(get_current_user),
    fanout=Depends(get_fanout),
):
    comment = comments_service.create_comment(
        user, post_id, body.text, fanout, parent_comment_id=body.parent_comment_id
    )
    return {"success": True, "comment": comment}


@router.get("/post/{post_id}")
def list_comments(
    post_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=comments_service.LIST_LIMIT, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg = comments_service.list_comments(post_id, user["id"], page, limit)
    return {"success": True, "comments": pg.items, **pg.meta("total_comments")}


@router.get("/{comment_id}/replies")
def list_replies(
    comment_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=comments_service.LIST_LIMIT, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg = comments_service.list_replies(comment_id, user["id"], page, limit)
    return {"success": True, "replies": pg.items, **pg.meta("total_replies")}


@router.put("/{comment_id}")
def edit_comment(comment_id: str, body: CommentEditReq, user=Depends(get_current_user)):
    return {"success": True, "comment": comments_service.edit_comment(user, comment_id, body.text)}


@router.post("/{comment_id}/like")
def like_comment(comment_id: str, user=Depends(get_current_user), fanout=Depends(get_fanout)):
    return {"success": True, **comments_service.react(user, comment_id, LIKE, fanout)}


@router.post("/{comment_id}/dislike")
def dislike_comment(comment_id: str, user=Depends(get_current_user), fanout=Depends(get_fanout)):
    return {"success": True, **comments_service.react(user, comment_id, DISLIKE, fanout)}


@router.delete("/{comment_id}")
def delete_comment(comment_id: str, user=Depends(get_current_user)):
    comments_service.delete_comment(user, comment_id)
    return {"success": True, "message": "Comment deleted successfully"}
