from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["misc"])

@router.get("/api/health")
async def health():
    return {"success": True, "status": "ok"}
