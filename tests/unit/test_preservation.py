"""Tests for the preservation client."""

import httpx
import pytest

from accessionflow.errors import AccessionFlowError, PreservationNotFoundError
from accessionflow.preservation import HttpPreservationClient, InMemoryPreservationClient


def _client(handler):
    return HttpPreservationClient(
        "https://preservation.example.edu/v1",
        client=httpx.AsyncClient(
            base_url="https://preservation.example.edu/v1",
            transport=httpx.MockTransport(handler),
        ),
    )


@pytest.mark.asyncio
async def test_current_version():
    def handler(request):
        assert request.url.path == "/v1/objects/druid:bc123df4567.json"
        return httpx.Response(200, json={"druid": "bc123df4567", "current_version": 3})

    assert await _client(handler).current_version("druid:bc123df4567") == 3


@pytest.mark.asyncio
async def test_not_found():
    client = _client(lambda request: httpx.Response(404))
    with pytest.raises(PreservationNotFoundError):
        await client.current_version("druid:bc123df4567")


@pytest.mark.asyncio
async def test_server_error():
    client = _client(lambda request: httpx.Response(500))
    with pytest.raises(AccessionFlowError):
        await client.current_version("druid:bc123df4567")


@pytest.mark.asyncio
async def test_in_memory_client():
    client = InMemoryPreservationClient({"druid:bc123df4567": 2})
    assert await client.current_version("druid:bc123df4567") == 2
    with pytest.raises(PreservationNotFoundError):
        await client.current_version("druid:xy987zz6543")
