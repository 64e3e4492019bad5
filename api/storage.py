"""
Supabase Storage hand-off for downloaded CEP archives.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from supabase import Client

from api.config import config
from api.repository import get_supabase
from core.errors import StorageError
from core.job_manager import ArtifactStorage

logger = logging.getLogger(__name__)


class SupabaseArtifactStorage(ArtifactStorage):
    """Uploads ``<job_id>.zip`` to a bucket and returns a signed URL for it."""

    def __init__(
        self,
        client: Optional[Client] = None,
        bucket: Optional[str] = None,
        signed_url_ttl: Optional[int] = None,
    ):
        self._client = client
        self.bucket = bucket or config.STORAGE_BUCKET
        self.signed_url_ttl = signed_url_ttl or config.SIGNED_URL_TTL_SECONDS

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    async def upload_artifact(self, local_path: Union[str, Path], job_id: str) -> str:
        return await asyncio.to_thread(self._upload_sync, Path(local_path), job_id)

    def _upload_sync(self, local_path: Path, job_id: str) -> str:
        name = f"{job_id}.zip"
        bucket = self.client.storage.from_(self.bucket)

        logger.info(f"[{job_id}] uploading {name} to bucket {self.bucket}")
        bucket.upload(
            name,
            local_path.read_bytes(),
            file_options={"content-type": "application/zip", "upsert": "true"},
        )

        signed = bucket.create_signed_url(name, self.signed_url_ttl)
        url = signed.get("signedURL") or signed.get("signedUrl")
        if not url:
            raise StorageError(f"Signed URL generation failed for {name}")
        return url
