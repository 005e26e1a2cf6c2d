"""
Durable Blob Store Adapter

Wraps one S3-compatible bucket (the "container") used as the persistent
image cache:
- Lazily built client, shared by every request of the process
- Single initialisation guarded by an asyncio.Lock
- Fail-open reads/writes: store faults are logged and reported as a miss
  or an unsuccessful write, never raised
- Fail-closed initialisation: a missing credential or unreachable
  container is raised to the caller

Layout:
image-cache/
├── 3f2a...9c.webp
├── 77b0...1d.jpeg
└── ...
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from .config import Settings
from .errors import ConfigurationError, StoreInitError

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}


@dataclass
class BlobProperties:
    """Metadata of a stored object."""
    name: str
    last_modified: datetime
    size_bytes: int = 0
    content_type: Optional[str] = None


@dataclass
class StoredBlob:
    """A downloaded object."""
    data: bytes
    last_modified: datetime
    content_type: Optional[str] = None


def _is_not_found(error: ClientError) -> bool:
    code = error.response.get("Error", {}).get("Code", "")
    return code in NOT_FOUND_CODES


def create_s3_client(settings: Settings) -> Any:
    """Build a boto3 S3 client that never retries on its own."""
    session = boto3.session.Session()
    client_args = {
        "endpoint_url": settings.endpoint_url,
        "region_name": settings.region,
    }
    return session.client(
        "s3",
        aws_access_key_id=settings.access_key_id,
        aws_secret_access_key=settings.secret_access_key,
        config=Config(
            signature_version="s3v4",
            connect_timeout=settings.store_timeout,
            read_timeout=settings.store_timeout,
            retries={"total_max_attempts": 1},
        ),
        **{k: v for k, v in client_args.items() if v},
    )


class BlobStoreAdapter:
    """
    Process-wide handle to the durable image cache container.

    Usage:
        store = BlobStoreAdapter(settings)
        props = await store.get_properties("abc.webp")
    """

    def __init__(
        self,
        settings: Settings,
        client_factory: Callable[[Settings], Any] = create_s3_client,
    ):
        self.settings = settings
        self.container = settings.container
        self._client_factory = client_factory
        self._client: Optional[Any] = None
        self._lock = asyncio.Lock()

    @property
    def is_ready(self) -> bool:
        return self._client is not None

    async def ensure_ready(self) -> Any:
        """
        Return the shared client, building it on first use.

        A failed build is not remembered: the next call tries again.

        Raises:
            ConfigurationError: credential is not configured
            StoreInitError: container could not be verified or created
        """
        if self._client is not None:
            return self._client

        async with self._lock:
            if self._client is not None:
                return self._client

            if not self.settings.access_key_id or not self.settings.secret_access_key:
                logger.error("[BlobStore] Store credential not configured")
                raise ConfigurationError("Image cache store credential not configured")

            try:
                client = self._client_factory(self.settings)
                await asyncio.to_thread(self._ensure_container, client)
            except Exception as e:
                logger.error(f"[BlobStore] Failed to create container client: {e}")
                raise StoreInitError(f"Failed to prepare container '{self.container}': {e}") from e

            self._client = client
            logger.info(f"[BlobStore] Container ready: {self.container}")
            return client

    def _ensure_container(self, client: Any) -> None:
        """Create the container if it doesn't exist (private, the default ACL)."""
        try:
            client.head_bucket(Bucket=self.container)
            return
        except ClientError as e:
            if not _is_not_found(e):
                raise

        create_args = {"Bucket": self.container}
        if self.settings.region and self.settings.region != "us-east-1":
            create_args["CreateBucketConfiguration"] = {
                "LocationConstraint": self.settings.region
            }
        client.create_bucket(**create_args)
        logger.info(f"[BlobStore] Created container: {self.container}")

    async def get_properties(self, name: str) -> Optional[BlobProperties]:
        """
        Look up object metadata.

        Returns:
            BlobProperties if the object exists, None if it does not or the
            store could not be read.
        """
        client = await self.ensure_ready()
        try:
            response = await asyncio.to_thread(
                client.head_object, Bucket=self.container, Key=name
            )
        except ClientError as e:
            if not _is_not_found(e):
                logger.warning(f"[BlobStore] Failed to read properties of {name}: {e}")
            return None
        except Exception as e:
            logger.error(f"[BlobStore] Failed to read properties of {name}: {e}")
            return None

        return BlobProperties(
            name=name,
            last_modified=response["LastModified"],
            size_bytes=response.get("ContentLength", 0),
            content_type=response.get("ContentType"),
        )

    async def get(self, name: str) -> Optional[StoredBlob]:
        """Download an object; None if absent or on any retrieval fault."""
        client = await self.ensure_ready()
        try:
            response = await asyncio.to_thread(
                client.get_object, Bucket=self.container, Key=name
            )
            data = await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            if not _is_not_found(e):
                logger.warning(f"[BlobStore] Failed to get {name}: {e}")
            return None
        except Exception as e:
            logger.error(f"[BlobStore] Failed to get {name}: {e}")
            return None

        return StoredBlob(
            data=data,
            last_modified=response["LastModified"],
            content_type=response.get("ContentType"),
        )

    async def put(self, name: str, data: bytes, content_type: str, cache_control: str) -> bool:
        """
        Upload an object in a single request.

        Returns:
            True if stored, False if the store rejected or could not be reached.
        """
        client = await self.ensure_ready()
        try:
            await asyncio.to_thread(
                client.put_object,
                Bucket=self.container,
                Key=name,
                Body=data,
                ContentType=content_type,
                CacheControl=cache_control,
            )
        except Exception as e:
            logger.error(f"[BlobStore] Failed to cache {name}: {e}")
            return False

        logger.debug(f"[BlobStore] Stored: {name} ({len(data)} bytes)")
        return True

    async def delete_if_exists(self, name: str) -> bool:
        """Delete an object. Missing objects count as deleted."""
        client = await self.ensure_ready()
        try:
            await asyncio.to_thread(
                client.delete_object, Bucket=self.container, Key=name
            )
        except ClientError as e:
            if _is_not_found(e):
                return True
            logger.warning(f"[BlobStore] Failed to delete {name}: {e}")
            return False
        except Exception as e:
            logger.error(f"[BlobStore] Failed to delete {name}: {e}")
            return False

        logger.debug(f"[BlobStore] Removed: {name}")
        return True

    async def list_blobs(self) -> List[BlobProperties]:
        """List every object in the container (partial list on failure)."""
        client = await self.ensure_ready()
        found: List[BlobProperties] = []
        try:
            await asyncio.to_thread(self._list_into, client, found)
        except Exception as e:
            logger.error(f"[BlobStore] Failed to list container: {e}")
        return found

    def _list_into(self, client: Any, found: List[BlobProperties]) -> None:
        kwargs = {"Bucket": self.container}
        while True:
            page = client.list_objects_v2(**kwargs)
            for item in page.get("Contents", []):
                found.append(BlobProperties(
                    name=item["Key"],
                    last_modified=item["LastModified"],
                    size_bytes=item.get("Size", 0),
                ))
            if not page.get("IsTruncated"):
                break
            kwargs["ContinuationToken"] = page["NextContinuationToken"]

    def status(self) -> dict:
        return {
            "backend": "s3",
            "container": self.container,
            "endpoint": self.settings.endpoint_url,
            "ready": self.is_ready,
        }
