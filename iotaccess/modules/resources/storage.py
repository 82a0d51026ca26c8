"""Object storage calls made with a device or service-account token."""

import logging
from urllib.parse import quote

from ..api.models import BucketModel, StorageObjectModel
from ..credentials.tokens import BearerToken
from ..transport import parse_model
from .base import BearerResource

logger = logging.getLogger(__name__)


class StorageResource(BearerResource):
    """Bucket and object operations against the storage JSON API."""

    def _bucket_url(self, bucket: str) -> str:
        return f"{self.base_url}/storage/v1/b/{quote(bucket, safe='')}"

    def _object_url(self, bucket: str, name: str) -> str:
        return f"{self._bucket_url(bucket)}/o/{quote(name, safe='')}"

    async def create_bucket(self, token: BearerToken, project_id: str, bucket: str) -> BucketModel:
        response = await self._call(
            "POST",
            f"{self.base_url}/storage/v1/b",
            token,
            f"Create bucket {bucket}",
            params={"project": project_id},
            json=BucketModel(name=bucket).to_wire(),
        )
        logger.info("Created bucket %s", bucket)
        return parse_model(response, BucketModel, f"Create bucket {bucket}")

    async def upload_object(
        self,
        token: BearerToken,
        bucket: str,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream"
    ) -> StorageObjectModel:
        """Upload *data* as object *name* with a single media request."""
        operation = f"Upload {bucket}/{name}"
        response = await self._call(
            "POST",
            f"{self.base_url}/upload/storage/v1/b/{quote(bucket, safe='')}/o",
            token,
            operation,
            params={"uploadType": "media", "name": name},
            content=data,
            headers={"Content-Type": content_type},
        )
        logger.info("Uploaded %d bytes to %s/%s", len(data), bucket, name)
        return parse_model(response, StorageObjectModel, operation)

    async def download_object(self, token: BearerToken, bucket: str, name: str) -> bytes:
        response = await self._call(
            "GET",
            self._object_url(bucket, name),
            token,
            f"Download {bucket}/{name}",
            params={"alt": "media"},
        )
        logger.info("Downloaded %d bytes from %s/%s", len(response.content), bucket, name)
        return response.content

    async def delete_object(self, token: BearerToken, bucket: str, name: str) -> None:
        await self._call("DELETE", self._object_url(bucket, name), token, f"Delete {bucket}/{name}")

    async def delete_bucket(self, token: BearerToken, bucket: str) -> None:
        await self._call("DELETE", self._bucket_url(bucket), token, f"Delete bucket {bucket}")
        logger.info("Deleted bucket %s", bucket)
