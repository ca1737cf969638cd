from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from traveldiary.auth.deps import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user
from traveldiary.core.settings import S
from traveldiary.models import LoginReq, PushTokenReq, RefreshReq, RegisterReq
from traveldiary.services import auth as auth_service
from traveldiary.services.users import private_user, set_push_token

router = APIRouter(prefix="/api/auth", tags=["auth"])

_REFRESH_PATH = "/api/auth"


def _set_auth_cookies(response: Response, access: str, refresh: str) -> None:
    response.set_cookie(
        ACCESS_COOKIE, access,
        httponly=True, secure=S.cookie_secure, samesite="lax", max_age=S.jwt_access_ttl_seconds,
    )
    response.set_cookie(
        REFRESH_COOKIE, refresh,
        httponly=True, secure=S.cookie_secure, samesite="lax", max_age=S.jwt_refresh_ttl_seconds,
        path=_REFRESH_PATH,
    )


@router.post("/register", status_code=201)
def register(body: RegisterReq, response: Response):
    user, access, refresh = auth_service.register(
        username=body.username,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        account_type=body.account_type,
    )
    _set_auth_cookies(response, access, refresh)
    return {"success": True, "user": private_user(user), "access_token": access, "refresh_token": refresh}


@router.post("/login")
def login(body: LoginReq, response: Response):
    user, access, refresh = auth_service.authenticate(body.identifier, body.password)
    _set_auth_cookies(response, access, refresh)
    return {"success": True, "user": private_user(user), "access_token": access, "refresh_token": refresh}


@router.post("/refresh-token")
def refresh_token(request: Request, response: Response, body: Optional[RefreshReq] = None):
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    access, refresh = auth_service.refresh_tokens(token)
    _set_auth_cookies(response, access, refresh)
    return {"success": True, "access_token": access, "refresh_token": refresh}


@router.post("/logout")
def logout(response: Response, user=Depends(get_current_user)):
    auth_service.logout(user["id"])
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE, path=_REFRESH_PATH)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
def me(user=Depends(get_current_user)):
    return {"success": True, "user": private_user(user)}


@router.put("/fcm-token")
def update_push_token(body: PushTokenReq, user=Depends(get_current_user)):
    set_push_token(user["id"], body.fcm_token)
    return {"success": True, "message": "Push token updated"}
