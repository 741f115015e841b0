"""Tests for the boto3-backed object store with a stubbed client."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from embedbot.embedfix.storage import S3ObjectStore
from embedbot.exceptions import StorageError, StorageKeyNotFound


def client_error(code, op="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    return S3ObjectStore("bucket", "key", "secret", client=client)


class TestS3ObjectStore:
    @pytest.mark.asyncio
    async def test_get_reads_body(self, store, client):
        body = MagicMock()
        body.read.return_value = b"{}"
        client.get_object.return_value = {"Body": body}

        assert await store.get("data/votes.json") == b"{}"
        client.get_object.assert_called_once_with(Bucket="bucket", Key="data/votes.json")
        body.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_key_maps_to_not_found(self, store, client):
        client.get_object.side_effect = client_error("NoSuchKey")
        with pytest.raises(StorageKeyNotFound):
            await store.get("missing")

    @pytest.mark.asyncio
    async def test_other_errors_map_to_storage_error(self, store, client):
        client.put_object.side_effect = client_error("AccessDenied", "PutObject")
        with pytest.raises(StorageError) as excinfo:
            await store.put("k", b"x", "image/png")
        assert not isinstance(excinfo.value, StorageKeyNotFound)

        client.copy_object.side_effect = EndpointConnectionError(endpoint_url="https://r2.example")
        with pytest.raises(StorageError):
            await store.copy("a", "b")

    @pytest.mark.asyncio
    async def test_put_passes_acl_only_when_given(self, store, client):
        await store.put("a", b"1", "image/png", acl="public-read")
        await store.put("b", b"2", "application/json")

        first, second = client.put_object.call_args_list
        assert first.kwargs["ACL"] == "public-read"
        assert "ACL" not in second.kwargs
        assert second.kwargs["ContentType"] == "application/json"

    @pytest.mark.asyncio
    async def test_delete_many_batches_and_counts(self, store, client):
        client.delete_objects.side_effect = [
            {"Errors": [{"Key": "k0", "Code": "InternalError"}]},
            {},
        ]
        keys = [f"k{i}" for i in range(1500)]

        assert await store.delete_many(keys) == 1499
        first, second = client.delete_objects.call_args_list
        assert len(first.kwargs["Delete"]["Objects"]) == 1000
        assert len(second.kwargs["Delete"]["Objects"]) == 500

    @pytest.mark.asyncio
    async def test_tag_builds_tag_set(self, store, client):
        await store.tag("k", {"lifecycle": "temp-upload", "batch": "abc"})
        client.put_object_tagging.assert_called_once_with(
            Bucket="bucket",
            Key="k",
            Tagging={"TagSet": [{"Key": "lifecycle", "Value": "temp-upload"}, {"Key": "batch", "Value": "abc"}]},
        )
