from __future__ import annotations

from typing import List, Optional

from fastapi import BackgroundTasks, Request, UploadFile

from traveldiary.clients.media import MediaStore, Payload
from traveldiary.services.notifications import Fanout


def get_media_store(request: Request) -> MediaStore:
    return request.app.state.media


def get_fanout(request: Request, background_tasks: BackgroundTasks) -> Fanout:
    return Fanout(request.app.state.push, background_tasks)


async def read_payload(file: Optional[UploadFile]) -> Optional[Payload]:
    if file is None:
        return None
    return await file.read(), file.content_type


async def read_payloads(files: Optional[List[UploadFile]]) -> List[Payload]:
    out: List[Payload] = []
    for f in files or []:
        out.append((await f.read(), f.content_type))
    return out
