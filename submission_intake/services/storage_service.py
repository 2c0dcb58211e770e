"""Blob store for raw emails and attachments (Supabase storage)."""

from typing import Optional
from urllib.parse import quote

import httpx

from submission_intake.core.config import StorageSettings, settings
from submission_intake.core.exceptions import StorageError
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class StorageService:
    """Minimal put/get client for the Supabase storage REST API."""

    def __init__(
        self,
        storage_settings: Optional[StorageSettings] = None,
        timeout: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        storage_settings = storage_settings or settings.storage
        self.url = storage_settings.url.rstrip("/")
        self.default_bucket = storage_settings.bucket
        self.base_api_url = f"{self.url}/storage/v1"
        self.timeout = timeout or settings.http_timeout
        self.http_client = http_client
        self.headers = {
            "Authorization": f"Bearer {storage_settings.service_role_key}",
            "apikey": storage_settings.service_role_key,
        }

    def _object_url(self, bucket: str, key: str) -> str:
        return f"{self.base_api_url}/object/{bucket}/{quote(key, safe='/')}"

    async def put(
        self,
        bucket: str,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Store ``content`` under ``bucket/key`` (overwriting); returns the key.

        Raises:
            StorageError: If the upload fails
        """
        headers = {**self.headers, "Content-Type": content_type, "x-upsert": "true"}
        try:
            response = await self._request("POST", self._object_url(bucket, key), headers=headers, content=content)
        except httpx.HTTPError as e:
            LOGGER.error(f"Error uploading {key} to storage: {str(e)}", exc_info=True)
            raise StorageError(f"Storage upload error: {str(e)}", original_error=e) from e

        if response.status_code not in (200, 201):
            LOGGER.error(
                f"Failed to upload file to storage: {response.text}",
                extra={"bucket": bucket, "path": key, "status_code": response.status_code},
            )
            raise StorageError(f"Upload failed ({response.status_code}): {response.text}")

        LOGGER.debug("Stored object", extra={"bucket": bucket, "path": key, "bytes": len(content)})
        return key

    async def get(self, bucket: str, key: str) -> bytes:
        """Read the object at ``bucket/key``.

        Raises:
            StorageError: If the object is missing or the download fails
        """
        try:
            response = await self._request("GET", self._object_url(bucket, key), headers=self.headers)
        except httpx.HTTPError as e:
            LOGGER.error(f"Error downloading {key} from storage: {str(e)}", exc_info=True)
            raise StorageError(f"Storage download error: {str(e)}", original_error=e) from e

        if response.status_code != 200:
            raise StorageError(f"Download of {bucket}/{key} failed ({response.status_code})")
        return response.content

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)
