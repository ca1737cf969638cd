from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from traveldiary.auth.deps import get_current_user
from traveldiary.deps import get_fanout
from traveldiary.models import MailReplyReq, MailSendReq
from traveldiary.services import mail as mail_service

router = APIRouter(prefix="/api/mails", tags=["mails"])


@router.post("/send", status_code=201)
def send_mail(body: MailSendReq, user=Depends(get_current_user), fanout=Depends(get_fanout)):
    mail = mail_service.send_mail(user, body.recipient_id, body.subject, body.message, fanout)
    return {"success": True, "mail": mail}


@router.post("/{mail_id}/reply", status_code=201)
def reply_mail(mail_id: str, body: MailReplyReq, user=Depends(get_current_user), fanout=Depends(get_fanout)):
    return {"success": True, "mail": mail_service.reply_mail(user, mail_id, body.message, fanout)}


@router.get("/inbox")
def inbox(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=mail_service.LIST_LIMIT, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg, unread = mail_service.inbox(user, page, limit)
    return {"success": True, "mails": pg.items, "unread_count": unread, **pg.meta()}


@router.get("/sent")
def sent(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=mail_service.LIST_LIMIT, ge=1, le=100),
    user=Depends(get_current_user),
):
    pg = mail_service.sent(user, page, limit)
    return {"success": True, "mails": pg.items, **pg.meta()}


@router.get("/{mail_id}/thread")
def thread(mail_id: str, user=Depends(get_current_user)):
    return {"success": True, "thread": mail_service.thread(user, mail_id)}


@router.put("/{mail_id}/read")
def mark_read(mail_id: str, user=Depends(get_current_user)):
    mail_service.mark_read(user, mail_id)
    return {"success": True}


@router.delete("/{mail_id}")
def delete_mail(mail_id: str, user=Depends(get_current_user)):
    mail_service.delete_mail(user, mail_id)
    return {"success": True, "message": "Mail deleted successfully"}
