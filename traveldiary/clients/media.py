from __future__ import annotations

import mimetypes
import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException

from traveldiary.core.errors import Validation
from traveldiary.core.logging import get_logger
from traveldiary.core.settings import S

logger = get_logger(__name__)

IMAGE = "image"
VIDEO = "video"

# (bytes, content_type)
Payload = Tuple[bytes, Optional[str]]


def classify(content_type: Optional[str]) -> str:
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    if ct.startswith("image/"):
        return IMAGE
    if ct.startswith("video/"):
        return VIDEO
    raise Validation(f"Unsupported media type: {content_type or 'unknown'}")


class MediaStore:
    """S3-backed media host. Media ids are the object keys."""

    def __init__(
        self,
        s3,
        bucket: str,
        *,
        root_folder: str = "travel-diary",
        public_base_url: str = "",
        region: str = "us-east-1",
        max_image_bytes: int = 10 * 1024 * 1024,
        max_video_bytes: int = 100 * 1024 * 1024,
    ):
        self._s3 = s3
        self.bucket = bucket
        self.root_folder = root_folder.strip("/")
        self.public_base_url = public_base_url.rstrip("/")
        self.region = region
        self.max_image_bytes = max_image_bytes
        self.max_video_bytes = max_video_bytes

    @classmethod
    def from_settings(cls, s3) -> "MediaStore":
        return cls(
            s3,
            S.media_bucket,
            root_folder=S.media_root_folder,
            public_base_url=S.media_public_base_url,
            region=S.aws_region,
            max_image_bytes=S.max_image_bytes,
            max_video_bytes=S.max_video_bytes,
        )

    def _object_key(self, folder: str, content_type: str) -> str:
        ext = mimetypes.guess_extension(content_type.split(";", 1)[0].strip()) or ".bin"
        return f"{self.root_folder}/{folder.strip('/')}/{uuid.uuid4().hex}{ext}"

    def url_for(self, media_id: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{media_id}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{media_id}"

    def _put(self, data: bytes, folder: str, content_type: str, limit: int) -> Dict[str, Any]:
        if not self.bucket:
            raise HTTPException(500, "media bucket not configured")
        if not data:
            raise Validation("Empty media file")
        if len(data) > limit:
            raise Validation(f"Media file too large (max {limit} bytes)")
        media_id = self._object_key(folder, content_type)
        try:
            self._s3.put_object(Bucket=self.bucket, Key=media_id, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as exc:
            logger.error("media_upload_failed", key=media_id, error=str(exc))
            raise HTTPException(500, "Media upload failed") from exc
        return {"id": media_id, "url": self.url_for(media_id)}

    def upload_image(self, data: bytes, folder: str, content_type: str = "image/jpeg") -> Dict[str, Any]:
        return self._put(data, folder, content_type, self.max_image_bytes)

    def upload_video(
        self,
        data: bytes,
        folder: str,
        content_type: str = "video/mp4",
        *,
        duration: Optional[float] = None,
        thumbnail_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        out = self._put(data, folder, content_type, self.max_video_bytes)
        out["duration"] = duration
        out["thumbnail_url"] = thumbnail_url
        return out

    def delete(self, media_id: str) -> bool:
        if not media_id or not self.bucket:
            return False
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=media_id)
            return True
        except (ClientError, BotoCoreError) as exc:
            logger.warning("media_delete_failed", key=media_id, error=str(exc))
            return False

    def upload(self, payload: Payload, folder: str) -> Dict[str, Any]:
        data, content_type = payload
        kind = classify(content_type)
        if kind == IMAGE:
            out = self.upload_image(data, folder, content_type or "image/jpeg")
            return {"type": IMAGE, "id": out["id"], "url": out["url"], "thumbnail_url": None, "duration": None}
        out = self.upload_video(data, folder, content_type or "video/mp4")
        return {"type": VIDEO, **out}

    def upload_many(self, payloads: Sequence[Payload], folder: str) -> List[Dict[str, Any]]:
        """Upload in order; on any failure the already-stored objects are removed again."""
        for _, content_type in payloads:
            classify(content_type)
        uploaded: List[Dict[str, Any]] = []
        try:
            for payload in payloads:
                uploaded.append(self.upload(payload, folder))
        except Exception:
            self.discard(uploaded)
            raise
        return uploaded

    def discard(self, media: Sequence[Dict[str, Any]]) -> None:
        for m in media:
            self.delete(m.get("id", ""))
