"""
Avatar Storage

Profile pictures go to the Supabase storage bucket configured in
SupabaseSettings.avatars_bucket.

Upload failures are not fatal: upload() returns None and the caller
keeps whatever image reference it already had.
"""

import time
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)


def avatar_path(user_id: str, now_ms: Optional[int] = None) -> str:
    """<user_id>-<epoch ms>.png, so every upload gets a fresh public URL."""
    return f"{user_id}-{now_ms if now_ms is not None else int(time.time() * 1000)}.png"


class AvatarService:
    """
    Args:
        storage: the async client's storage namespace (client.storage)
        bucket: bucket name
    """

    def __init__(self, storage: Any, bucket: str = "avatars"):
        self._storage = storage
        self._bucket = bucket

    async def upload(
        self,
        user_id: str,
        data: bytes,
        content_type: str = "image/png",
    ) -> Optional[str]:
        """Upload an avatar and return its public URL, or None on failure."""
        path = avatar_path(user_id)
        bucket = self._storage.from_(self._bucket)
        try:
            await bucket.upload(
                path,
                data,
                file_options={"content-type": content_type, "upsert": "true"},
            )
            return await bucket.get_public_url(path)
        except Exception as e:
            logger.error("avatar_upload_failed", user_id=user_id, error=str(e))
            return None
