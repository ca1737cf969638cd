from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from traveldiary.auth.deps import get_current_user
from traveldiary.services import notifications as notifications_service

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg, unread = notifications_service.list_notifications(user["id"], page, limit)
    return {"success": True, "notifications": pg.items, "unread_count": unread, **pg.meta()}


@router.put("/read-all")
def mark_all_read(user=Depends(get_current_user)):
    n = notifications_service.mark_all_read(user["id"])
    return {"success": True, "marked": n}


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, user=Depends(get_current_user)):
    notifications_service.mark_read(user["id"], notification_id)
    return {"success": True}


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, user=Depends(get_current_user)):
    notifications_service.delete_notification(user["id"], notification_id)
    return {"success": True, "message": "Notification deleted"}
