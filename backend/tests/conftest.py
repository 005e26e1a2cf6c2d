"""
Image optimizer test configuration

Fixtures here stand in for the two remote systems:
- an in-memory S3 client (FakeS3Client) for the durable blob store
- an httpx MockTransport origin serving generated images

Run:
    cd backend
    pytest tests/ -v
"""

import sys
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path

import httpx
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError
from fastapi.testclient import TestClient
from PIL import Image

# Add the backend directory to the Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from image_optimizer.app import create_app
from image_optimizer.blob_store import BlobStoreAdapter
from image_optimizer.cache_manager import ImageCacheManager
from image_optimizer.config import Settings
from image_optimizer.transformer import ImageTransformer


ORIGIN = "https://example.com"


# ============================================
# Fake durable store
# ============================================

def _client_error(operation: str, code: str = "404") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "Not Found"}}, operation)


class FakeBody:
    def __init__(self, data: bytes):
        self._data = data

    def read(self) -> bytes:
        return self._data


class FakeS3Client:
    """Keeps objects in a dict, shaped like boto3 responses."""

    def __init__(self):
        self.buckets = set()
        self.objects = {}
        self.deleted = []

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise _client_error("HeadBucket")

    def create_bucket(self, Bucket, **kwargs):
        self.buckets.add(Bucket)

    def head_object(self, Bucket, Key):
        obj = self.objects.get(Key)
        if obj is None:
            raise _client_error("HeadObject")
        return {
            "LastModified": obj["last_modified"],
            "ContentLength": len(obj["data"]),
            "ContentType": obj["content_type"],
        }

    def get_object(self, Bucket, Key):
        obj = self.objects.get(Key)
        if obj is None:
            raise _client_error("GetObject", "NoSuchKey")
        return {
            "Body": FakeBody(obj["data"]),
            "LastModified": obj["last_modified"],
            "ContentType": obj["content_type"],
        }

    def put_object(self, Bucket, Key, Body, ContentType=None, CacheControl=None):
        self.objects[Key] = {
            "data": Body,
            "content_type": ContentType,
            "cache_control": CacheControl,
            "last_modified": datetime.now(timezone.utc),
        }

    def delete_object(self, Bucket, Key):
        self.deleted.append(Key)
        self.objects.pop(Key, None)

    def list_objects_v2(self, Bucket, ContinuationToken=None):
        keys = sorted(self.objects)
        # Two objects per page to exercise pagination
        start = int(ContinuationToken or 0)
        page = keys[start:start + 2]
        response = {
            "Contents": [
                {
                    "Key": key,
                    "LastModified": self.objects[key]["last_modified"],
                    "Size": len(self.objects[key]["data"]),
                }
                for key in page
            ],
            "IsTruncated": start + 2 < len(keys),
        }
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + 2)
        return response

    def add(self, key: str, data: bytes, last_modified: datetime, content_type: str = "image/webp"):
        self.objects[key] = {
            "data": data,
            "content_type": content_type,
            "cache_control": None,
            "last_modified": last_modified,
        }


class OutageS3Client(FakeS3Client):
    """Container verifies, every object operation fails."""

    def _down(self, *args, **kwargs):
        raise EndpointConnectionError(endpoint_url="https://store.invalid")

    head_object = _down
    get_object = _down
    put_object = _down
    delete_object = _down
    list_objects_v2 = _down


# ============================================
# Fake origin
# ============================================

def make_image(size=(400, 300), fmt="PNG", mode="RGB", color=(200, 30, 30)) -> bytes:
    output = BytesIO()
    Image.new(mode, size, color).save(output, format=fmt)
    return output.getvalue()


class FakeOrigin:
    """
    Routes:
    - /a.png        400x300 PNG
    - /alpha.png    400x300 RGBA PNG
    - /missing.png  404
    - /text         200 with non-image body
    - /huge.png     body bigger than small size caps
    """

    def __init__(self):
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        path = request.url.path
        if path == "/a.png":
            return httpx.Response(200, content=make_image(), headers={"content-type": "image/png"})
        if path == "/alpha.png":
            return httpx.Response(200, content=make_image(mode="RGBA", color=(0, 0, 255, 128)))
        if path == "/text":
            return httpx.Response(200, content=b"definitely not an image")
        if path == "/huge.png":
            return httpx.Response(200, content=b"\0" * 4096)
        return httpx.Response(404, content=b"not found")

    @property
    def fetch_count(self) -> int:
        return len(self.requests)


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def settings():
    return Settings(access_key_id="test-key", secret_access_key="test-secret")


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def store(settings, s3_client):
    return BlobStoreAdapter(settings, client_factory=lambda _settings: s3_client)


@pytest.fixture
def origin():
    return FakeOrigin()


@pytest.fixture
def transformer(origin):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(origin))
    return ImageTransformer(http_client=http_client)


@pytest.fixture
def cache_manager(store, transformer):
    return ImageCacheManager(store=store, transformer=transformer)


@pytest.fixture
def client(settings, store, transformer):
    app = create_app(settings=settings, store=store, transformer=transformer)
    return TestClient(app)
