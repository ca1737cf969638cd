from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from traveldiary.clients.media import MediaStore
from traveldiary.clients.push import PushDispatcher
from traveldiary.core.aws import s3_client
from traveldiary.core.errors import error_body
from traveldiary.core.logging import get_logger, setup_logging
from traveldiary.core.settings import S
from traveldiary.metrics import metrics_endpoint, metrics_middleware, set_app_info
from traveldiary.routers.auth import router as auth_router
from traveldiary.routers.users import router as users_router
from traveldiary.routers.posts import router as posts_router
from traveldiary.routers.comments import router as comments_router
from traveldiary.routers.stories import router as stories_router
from traveldiary.routers.chats import router as chats_router
from traveldiary.routers.mails import router as mails_router
from traveldiary.routers.notifications import router as notifications_router
from traveldiary.routers.misc import router as misc_router

logger = get_logger(__name__)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "errors": [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors
        ]},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


def create_app() -> FastAPI:
    S.validate()
    setup_logging()
    app = FastAPI(title="Travel Diary API", version="0.1.0")

    app.state.media = MediaStore.from_settings(s3_client())
    app.state.push = PushDispatcher.from_settings()

    origins = [o.strip() for o in S.allowed_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if S.metrics_enabled:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(posts_router)
    app.include_router(comments_router)
    app.include_router(stories_router)
    app.include_router(chats_router)
    app.include_router(mails_router)
    app.include_router(notifications_router)
    app.include_router(misc_router)

    logger.info("app_started", environment=S.environment, table=S.app_table, push=app.state.push.configured)
    return app

app = create_app()
