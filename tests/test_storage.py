"""Tests for blob storage drivers."""

import io

import httpx
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from alias_decks.config import Settings
from alias_decks.exceptions import (
    BlobNotFoundError,
    StorageConfigurationError,
    StorageUnavailableError,
)
from alias_decks.services.storage import (
    MemoryBlobStorage,
    S3BlobStorage,
    SupabaseBlobStorage,
    build_object_key,
    create_blob_storage,
    put_deck_json,
)

BUCKET = "decks-bucket"


def s3_settings(**overrides) -> Settings:
    values = {
        "storage_driver": "s3",
        "storage_bucket": BUCKET,
        "storage_s3_region": "eu-west-1",
        "storage_s3_access_key_id": "test",
        "storage_s3_secret_access_key": "test",
        "storage_public_base_url": None,
    }
    values.update(overrides)
    return Settings(**values)


def supabase_settings(**overrides) -> Settings:
    values = {
        "storage_driver": "supabase",
        "storage_bucket": BUCKET,
        "storage_supabase_url": "https://project.supabase.co/",
        "storage_supabase_service_role_key": "service-key",
        "storage_public_base_url": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.mark.parametrize(
    "slug, prefix, expected",
    [
        ("party", "decks", "decks/party.json"),
        ("party", "/decks/ ", "decks/party.json"),
        ("party.json", "decks", "decks/party.json"),
        ("party", "", "party.json"),
        ("party", None, "party.json"),
    ],
)
def test_build_object_key(slug, prefix, expected):
    assert build_object_key(slug, prefix) == expected


def test_factory_requires_driver():
    with pytest.raises(StorageConfigurationError):
        create_blob_storage(Settings(storage_driver=None))


def test_factory_requires_bucket():
    with pytest.raises(StorageConfigurationError):
        create_blob_storage(s3_settings(storage_bucket=""))


def test_factory_selects_driver():
    assert create_blob_storage(s3_settings()).driver == "s3"
    assert create_blob_storage(s3_settings(storage_driver="r2")).driver == "r2"
    assert create_blob_storage(supabase_settings()).driver == "supabase"
    assert create_blob_storage(Settings(storage_driver="memory")).driver == "memory"


@pytest.mark.asyncio
async def test_memory_storage_roundtrip():
    storage = MemoryBlobStorage("local")
    location = await put_deck_json(storage, "party", '{"title":"Party"}')

    assert location.key == "decks/party.json"
    assert location.url == "memory://local/decks/party.json"
    blob = await storage.get(location.url)
    assert blob.body == b'{"title":"Party"}'

    storage.reset()
    with pytest.raises(BlobNotFoundError):
        await storage.get(location.url)


@pytest.mark.asyncio
async def test_s3_put_uses_default_public_url():
    storage = S3BlobStorage(s3_settings())
    with Stubber(storage.client) as stubber:
        stubber.add_response(
            "put_object",
            {"ETag": '"etag"'},
            {
                "Bucket": BUCKET,
                "Key": "decks/party.json",
                "Body": b"{}",
                "ContentType": "application/json",
                "CacheControl": "public, max-age=3600",
            },
        )
        url = await storage.put("decks/party.json", b"{}", "application/json")
        stubber.assert_no_pending_responses()

    assert url == f"https://{BUCKET}.s3.eu-west-1.amazonaws.com/decks/party.json"


@pytest.mark.asyncio
async def test_s3_public_base_url():
    storage = S3BlobStorage(s3_settings(storage_public_base_url="https://cdn.example.com/"))
    assert storage.public_url("decks/party.json") == "https://cdn.example.com/decks/party.json"
    assert storage.key_from_url("https://cdn.example.com/decks/party.json") == "decks/party.json"


def test_r2_requires_public_base_url():
    storage = S3BlobStorage(s3_settings(storage_driver="r2"), driver="r2")
    with pytest.raises(StorageConfigurationError):
        storage.public_url("decks/party.json")


@pytest.mark.asyncio
async def test_s3_get_reads_object():
    storage = S3BlobStorage(s3_settings())
    body = b'{"title":"Party"}'
    with Stubber(storage.client) as stubber:
        stubber.add_response(
            "get_object",
            {
                "Body": StreamingBody(io.BytesIO(body), len(body)),
                "ContentType": "application/json",
                "ETag": '"abc"',
                "ContentLength": len(body),
            },
            {"Bucket": BUCKET, "Key": "decks/party.json"},
        )
        blob = await storage.get(storage.public_url("decks/party.json"))

    assert blob.body == body
    assert blob.etag == '"abc"'
    assert blob.content_length == len(body)


@pytest.mark.asyncio
async def test_s3_missing_key_is_not_found():
    storage = S3BlobStorage(s3_settings())
    with Stubber(storage.client) as stubber:
        stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
        with pytest.raises(BlobNotFoundError):
            await storage.get(storage.public_url("decks/gone.json"))


@pytest.mark.asyncio
async def test_s3_other_errors_are_unavailable():
    storage = S3BlobStorage(s3_settings())
    with Stubber(storage.client) as stubber:
        stubber.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(StorageUnavailableError):
            await storage.put("decks/party.json", b"{}", "application/json")

        stubber.add_client_error("get_object", service_error_code="InternalError", http_status_code=500)
        with pytest.raises(StorageUnavailableError):
            await storage.get(storage.public_url("decks/party.json"))


@pytest.mark.asyncio
async def test_supabase_upload():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": f"{BUCKET}/decks/party.json"})

    storage = SupabaseBlobStorage(supabase_settings(), transport=httpx.MockTransport(handler))
    url = await storage.put("decks/party.json", b"{}", "application/json")

    assert url == f"https://project.supabase.co/storage/v1/object/public/{BUCKET}/decks/party.json"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == f"/storage/v1/object/{BUCKET}/decks/party.json"
    assert request.headers["x-upsert"] == "true"
    assert request.headers["authorization"] == "Bearer service-key"


@pytest.mark.asyncio
async def test_supabase_upload_failure():
    storage = SupabaseBlobStorage(
        supabase_settings(),
        transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "bad"})),
    )
    with pytest.raises(StorageUnavailableError):
        await storage.put("decks/party.json", b"{}", "application/json")


@pytest.mark.asyncio
async def test_public_fetch_distinguishes_not_found_from_outage():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("gone.json"):
            return httpx.Response(404)
        if request.url.path.endswith("broken.json"):
            return httpx.Response(503)
        if request.url.path.endswith("offline.json"):
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=b"{}", headers={"etag": '"v1"'})

    storage = SupabaseBlobStorage(supabase_settings(), transport=httpx.MockTransport(handler))
    base = f"https://project.supabase.co/storage/v1/object/public/{BUCKET}/decks"

    blob = await storage.get(f"{base}/party.json")
    assert blob.body == b"{}"
    assert blob.etag == '"v1"'

    with pytest.raises(BlobNotFoundError):
        await storage.get(f"{base}/gone.json")
    with pytest.raises(StorageUnavailableError):
        await storage.get(f"{base}/broken.json")
    with pytest.raises(StorageUnavailableError):
        await storage.get(f"{base}/offline.json")
