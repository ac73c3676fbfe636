"""Object storage for deck JSON payloads (S3/R2, Supabase Storage, memory)."""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import quote

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from alias_decks.config import Settings, get_settings
from alias_decks.exceptions import (
    BlobNotFoundError,
    StorageConfigurationError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
DECK_CACHE_SECONDS = 3600


@dataclass
class StorageLocation:
    key: str
    url: str


@dataclass
class BlobObject:
    body: bytes
    content_type: str = JSON_CONTENT_TYPE
    etag: Optional[str] = None
    content_length: Optional[int] = None


class BlobStorage(Protocol):
    """Capabilities every storage driver provides."""

    driver: str

    async def put(self, key: str, body: bytes, content_type: str) -> str: ...

    async def get(self, url: str) -> BlobObject: ...

    async def health_check(self) -> bool: ...


def normalize_prefix(prefix: Optional[str]) -> str:
    if not prefix:
        return ""
    return "".join(prefix.split()).strip("/")


def build_object_key(slug: str, prefix: Optional[str]) -> str:
    """``<prefix>/<slug>.json`` with stray slashes and suffixes removed."""
    normalized_slug = slug.lstrip("/")
    if normalized_slug.endswith(".json"):
        normalized_slug = normalized_slug[: -len(".json")]
    prefix = normalize_prefix(prefix)
    return f"{prefix}/{normalized_slug}.json" if prefix else f"{normalized_slug}.json"


def join_url(base: str, key: str) -> str:
    return f"{base.rstrip('/')}/{key.lstrip('/')}"


async def put_deck_json(
    storage: BlobStorage, slug: str, deck_json: str, prefix: Optional[str] = None
) -> StorageLocation:
    """Upload a serialized deck under its slug-derived key."""
    if prefix is None:
        prefix = get_settings().storage_prefix
    key = build_object_key(slug, prefix)
    url = await storage.put(key, deck_json.encode("utf-8"), JSON_CONTENT_TYPE)
    logger.info(f"Uploaded deck JSON to {url}")
    return StorageLocation(key=key, url=url)


async def fetch_public_blob(
    url: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None
) -> BlobObject:
    """
    GET a blob by its public URL.

    404 becomes ``BlobNotFoundError``; every other failure becomes
    ``StorageUnavailableError``.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url, headers={"Accept": JSON_CONTENT_TYPE})
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch deck JSON from {url}: {e}")
        raise StorageUnavailableError() from e

    if response.status_code == 404:
        raise BlobNotFoundError()
    if response.status_code >= 400:
        logger.error(f"Failed to fetch deck JSON from {url} (status {response.status_code})")
        raise StorageUnavailableError()

    return BlobObject(
        body=response.content,
        content_type=response.headers.get("content-type", JSON_CONTENT_TYPE),
        etag=response.headers.get("etag"),
        content_length=len(response.content),
    )


class S3BlobStorage:
    """S3 and S3-compatible (R2, MinIO) storage through boto3."""

    def __init__(self, settings: Settings, driver: str = "s3"):
        self.driver = driver
        self._settings = settings
        self._client = None
        self._bucket = settings.storage_bucket

    @property
    def client(self):
        """Lazy initialization of S3 client."""
        if self._client is None:
            settings = self._settings
            endpoint = settings.storage_s3_endpoint
            force_path_style = (
                self.driver == "r2" or endpoint is not None or settings.storage_s3_force_path_style
            )
            self._client = boto3.client(
                "s3",
                region_name=settings.storage_s3_region,
                endpoint_url=endpoint,
                aws_access_key_id=settings.storage_s3_access_key_id,
                aws_secret_access_key=settings.storage_s3_secret_access_key,
                config=Config(
                    signature_version="s3v4",
                    connect_timeout=settings.storage_timeout_seconds,
                    read_timeout=settings.storage_timeout_seconds,
                    retries={"max_attempts": 2},
                    s3={"addressing_style": "path" if force_path_style else "auto"},
                ),
            )
        return self._client

    def public_url(self, key: str) -> str:
        base = self._settings.storage_public_base_url
        if base:
            return join_url(base, key)
        if self.driver == "s3":
            region = self._settings.storage_s3_region
            return f"https://{self._bucket}.s3.{region}.amazonaws.com/{key}"
        raise StorageConfigurationError(
            "Set STORAGE_PUBLIC_BASE_URL to compute deck JSON URLs for the configured storage provider."
        )

    def key_from_url(self, url: str) -> Optional[str]:
        """Recover the object key when ``url`` is one of ours."""
        for candidate_base in self._url_bases():
            prefix = candidate_base.rstrip("/") + "/"
            if url.startswith(prefix):
                return url[len(prefix):]
        return None

    def _url_bases(self) -> list[str]:
        bases = []
        if self._settings.storage_public_base_url:
            bases.append(self._settings.storage_public_base_url)
        if self.driver == "s3":
            region = self._settings.storage_s3_region
            bases.append(f"https://{self._bucket}.s3.{region}.amazonaws.com")
        return bases

    async def put(self, key: str, body: bytes, content_type: str) -> str:
        url = self.public_url(key)
        try:
            await run_in_threadpool(
                self.client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                CacheControl=f"public, max-age={DECK_CACHE_SECONDS}",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload of {key} failed: {e}")
            raise StorageUnavailableError() from e
        return url

    async def get(self, url: str) -> BlobObject:
        key = self.key_from_url(url)
        if key is None:
            return await fetch_public_blob(url, self._settings.storage_timeout_seconds)

        try:
            response = await run_in_threadpool(
                self.client.get_object, Bucket=self._bucket, Key=key
            )
            body = await run_in_threadpool(response["Body"].read)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                raise BlobNotFoundError() from e
            logger.error(f"S3 download of {key} failed: {e}")
            raise StorageUnavailableError() from e
        except BotoCoreError as e:
            logger.error(f"S3 download of {key} failed: {e}")
            raise StorageUnavailableError() from e

        return BlobObject(
            body=body,
            content_type=response.get("ContentType", JSON_CONTENT_TYPE),
            etag=response.get("ETag"),
            content_length=response.get("ContentLength", len(body)),
        )

    async def health_check(self) -> bool:
        """Check if storage is accessible."""
        try:
            await run_in_threadpool(self.client.head_bucket, Bucket=self._bucket)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"S3 health check failed: {e}")
            return False


class SupabaseBlobStorage:
    """Supabase Storage through its REST API."""

    driver = "supabase"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._bucket = settings.storage_bucket
        self._base_url = settings.storage_supabase_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        key = self._settings.storage_supabase_service_role_key
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._settings.storage_timeout_seconds,
            transport=self._transport,
            headers={"Authorization": f"Bearer {key}", "apikey": key},
        )

    def public_url(self, key: str) -> str:
        base = self._settings.storage_public_base_url
        if base:
            return join_url(base, key)
        return f"{self._base_url}/storage/v1/object/public/{self._bucket}/{quote(key)}"

    async def put(self, key: str, body: bytes, content_type: str) -> str:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"/storage/v1/object/{self._bucket}/{quote(key)}",
                    content=body,
                    headers={
                        "Content-Type": content_type,
                        "Cache-Control": f"max-age={DECK_CACHE_SECONDS}",
                        "x-upsert": "true",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"Supabase upload of {key} failed: {e}")
            raise StorageUnavailableError() from e

        if response.status_code >= 400:
            logger.error(
                f"Failed to upload deck JSON to Supabase Storage: {response.status_code} {response.text}"
            )
            raise StorageUnavailableError()
        return self.public_url(key)

    async def get(self, url: str) -> BlobObject:
        return await fetch_public_blob(
            url, self._settings.storage_timeout_seconds, transport=self._transport
        )

    async def health_check(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(f"/storage/v1/bucket/{self._bucket}")
            return response.status_code < 400
        except httpx.HTTPError:
            return False


class MemoryBlobStorage:
    """Process-local storage for tests and local development."""

    driver = "memory"

    def __init__(self, bucket: str = "decks"):
        self._bucket = bucket or "decks"
        self._objects: dict[str, BlobObject] = {}

    def public_url(self, key: str) -> str:
        return f"memory://{self._bucket}/{key}"

    async def put(self, key: str, body: bytes, content_type: str) -> str:
        url = self.public_url(key)
        self._objects[url] = BlobObject(
            body=body,
            content_type=content_type,
            etag=f'"{len(self._objects)}-{len(body)}"',
            content_length=len(body),
        )
        return url

    async def get(self, url: str) -> BlobObject:
        blob = self._objects.get(url)
        if blob is None:
            raise BlobNotFoundError()
        return blob

    async def health_check(self) -> bool:
        return True

    def reset(self) -> None:
        self._objects.clear()


def create_blob_storage(settings: Settings) -> BlobStorage:
    """Select the storage driver named by ``STORAGE_DRIVER``."""
    driver = settings.storage_driver
    if driver is None:
        raise StorageConfigurationError(
            "STORAGE_DRIVER must be set to 's3', 'r2', 'supabase' or 'memory' to upload deck JSON."
        )
    if driver == "memory":
        return MemoryBlobStorage(settings.storage_bucket)
    if not settings.storage_bucket:
        raise StorageConfigurationError("Missing required setting: STORAGE_BUCKET")
    if driver in ("s3", "r2"):
        return S3BlobStorage(settings, driver=driver)
    if not settings.storage_supabase_url or not settings.storage_supabase_service_role_key:
        raise StorageConfigurationError(
            "STORAGE_SUPABASE_URL and STORAGE_SUPABASE_SERVICE_ROLE_KEY are required for Supabase storage"
        )
    return SupabaseBlobStorage(settings)


_blob_storage: Optional[BlobStorage] = None


def get_blob_storage() -> BlobStorage:
    """Process-wide storage singleton, created on first use."""
    global _blob_storage
    if _blob_storage is None:
        _blob_storage = create_blob_storage(get_settings())
        logger.info(f"Deck storage driver: {_blob_storage.driver}")
    return _blob_storage


def reset_blob_storage() -> None:
    global _blob_storage
    _blob_storage = None
