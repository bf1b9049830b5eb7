"""Supabase Storage client abstraction.

Uploads attachment blobs (chat images, voice clips, post images, report
screenshots) to public buckets and returns their public URLs.

Two implementations:
- StorageClient: Supabase Storage API over a shared httpx.AsyncClient
- FakeStorageClient: in-memory objects for tests

All methods receive the full object name directly - no prefix manipulation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from kvrp.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """An uploaded object as held by FakeStorageClient."""

    content: bytes
    content_type: str


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class StorageClientBase(ABC):
    """Abstract base class for storage client implementations."""

    @abstractmethod
    async def upload_blob(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        """Upload an object and return its public URL.

        Args:
            bucket: Bucket name (e.g., "post-images").
            name: Object name from build_object_name().
            data: Object bytes.
            content_type: MIME type stored with the object.

        Returns:
            Public URL of the uploaded object.

        Raises:
            StorageError: If the upload fails.
        """
        ...

    @abstractmethod
    def public_url(self, bucket: str, name: str) -> str:
        """Return the public URL for an object. Does not check existence."""
        ...


class StorageClient(StorageClientBase):
    """Production Supabase Storage client."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        supabase_url: str,
        api_key: str,
        *,
        access_token: str | None = None,
        timeout_s: float = 15.0,
    ):
        """Initialize the storage client.

        Args:
            client: Shared httpx.AsyncClient.
            supabase_url: Supabase project URL (e.g., https://xxx.supabase.co).
            api_key: Project anon key.
            access_token: User JWT, when signed in; the anon key otherwise.
            timeout_s: Upload timeout in seconds.
        """
        self._client = client
        self._storage_url = f"{supabase_url.rstrip('/')}/storage/v1"
        self._timeout = httpx.Timeout(timeout_s, connect=min(timeout_s, 10.0))
        self._headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
        }

    async def upload_blob(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        # Supabase uses POST /object/{bucket}/{name}
        url = f"{self._storage_url}/object/{bucket}/{name}"
        headers = {**self._headers, "Content-Type": content_type, "x-upsert": "false"}

        try:
            response = await self._client.post(
                url, content=data, headers=headers, timeout=self._timeout
            )
        except httpx.TimeoutException as e:
            raise StorageError(f"Upload to {bucket} timed out", code="E_STORAGE_TIMEOUT") from e
        except httpx.HTTPError as e:
            raise StorageError(
                f"Upload to {bucket} failed: {type(e).__name__}", code="E_STORAGE_UNAVAILABLE"
            ) from e

        if response.status_code not in (200, 201):
            logger.warning(
                "storage_upload_rejected",
                bucket=bucket,
                status_code=response.status_code,
                size_bytes=len(data),
            )
            raise StorageError(
                f"Failed to upload object: {response.status_code}",
                code="E_UPLOAD_REJECTED",
            )

        logger.info("storage_upload_completed", bucket=bucket, size_bytes=len(data))
        return self.public_url(bucket, name)

    def public_url(self, bucket: str, name: str) -> str:
        return f"{self._storage_url}/object/public/{bucket}/{name}"


class FakeStorageClient(StorageClientBase):
    """Fake storage client for testing without real Supabase.

    Stores objects in memory. Set `fail_uploads` to make every upload raise.
    """

    def __init__(self, base_url: str = "https://fake-storage.test"):
        self._base_url = base_url.rstrip("/")
        self._objects: dict[tuple[str, str], StoredObject] = {}
        self.fail_uploads = False

    async def upload_blob(self, bucket: str, name: str, data: bytes, content_type: str) -> str:
        if self.fail_uploads:
            raise StorageError(f"Injected upload failure for {bucket}", code="E_UPLOAD_REJECTED")
        if (bucket, name) in self._objects:
            raise StorageError(f"Object already exists: {name}", code="E_UPLOAD_REJECTED")
        self._objects[(bucket, name)] = StoredObject(content=data, content_type=content_type)
        return self.public_url(bucket, name)

    def public_url(self, bucket: str, name: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{bucket}/{name}"

    # Test helper methods

    def get_object(self, bucket: str, name: str) -> StoredObject | None:
        """Get an uploaded object directly (test helper)."""
        return self._objects.get((bucket, name))

    def object_names(self, bucket: str) -> list[str]:
        """List object names in a bucket, in upload order (test helper)."""
        return [n for (b, n) in self._objects if b == bucket]
