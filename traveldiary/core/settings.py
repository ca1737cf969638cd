from __future__ import annotations

import os
from dataclasses import dataclass


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) not in ("0", "false", "False")


DEV_ACCESS_SECRET = "dev-access-secret"
DEV_REFRESH_SECRET = "dev-refresh-secret"


@dataclass(frozen=True)
class Settings:
    environment: str = os.environ.get("ENVIRONMENT", "development")
    log_level: str = os.environ.get("LOG_LEVEL", "")

    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # DynamoDB single table (PK/SK + GSI1..GSI3, all projecting ALL)
    app_table: str = os.environ.get("APP_TABLE", "travel_diary")
    ddb_ttl_attr: str = os.environ.get("DDB_TTL_ATTR", "ttl_epoch")

    # Media (S3)
    media_bucket: str = os.environ.get("MEDIA_BUCKET", "")
    media_public_base_url: str = os.environ.get("MEDIA_PUBLIC_BASE_URL", "").rstrip("/")
    media_root_folder: str = os.environ.get("MEDIA_ROOT_FOLDER", "travel-diary")
    max_image_bytes: int = int(os.environ.get("MAX_IMAGE_BYTES", str(10 * 1024 * 1024)))
    max_video_bytes: int = int(os.environ.get("MAX_VIDEO_BYTES", str(100 * 1024 * 1024)))
    max_post_media: int = int(os.environ.get("MAX_POST_MEDIA", "10"))

    # Tokens
    jwt_access_secret: str = os.environ.get("JWT_ACCESS_SECRET", DEV_ACCESS_SECRET)
    jwt_refresh_secret: str = os.environ.get("JWT_REFRESH_SECRET", DEV_REFRESH_SECRET)
    jwt_access_ttl_seconds: int = int(os.environ.get("JWT_ACCESS_TTL_SECONDS", str(24 * 3600)))
    jwt_refresh_ttl_seconds: int = int(os.environ.get("JWT_REFRESH_TTL_SECONDS", str(7 * 24 * 3600)))
    cookie_secure: bool = _flag("COOKIE_SECURE", "0")
    password_hash_iterations: int = int(os.environ.get("PASSWORD_HASH_ITERATIONS", "260000"))

    # Push / FCM
    push_enabled: bool = _flag("PUSH_ENABLED", "0")
    fcm_project_id: str = os.environ.get("FCM_PROJECT_ID", "")
    fcm_client_email: str = os.environ.get("FCM_CLIENT_EMAIL", "")
    fcm_private_key: str = os.environ.get("FCM_PRIVATE_KEY", "")  # keep \n escaped

    # Expiry
    story_ttl_hours: int = int(os.environ.get("STORY_TTL_HOURS", "24"))
    notification_ttl_days: int = int(os.environ.get("NOTIFICATION_TTL_DAYS", "30"))

    metrics_enabled: bool = _flag("METRICS_ENABLED", "1")
    allowed_origins: str = os.environ.get("ALLOWED_ORIGINS", "*")

    def validate(self) -> None:
        """Production refuses to start on the development token secrets."""
        if self.environment != "production":
            return
        missing = [
            name
            for name, value, dev in (
                ("JWT_ACCESS_SECRET", self.jwt_access_secret, DEV_ACCESS_SECRET),
                ("JWT_REFRESH_SECRET", self.jwt_refresh_secret, DEV_REFRESH_SECRET),
            )
            if not value or value == dev
        ]
        if missing:
            raise RuntimeError(f"{', '.join(missing)} must be set when ENVIRONMENT=production")


S = Settings()
