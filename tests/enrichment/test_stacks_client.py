"""Tests for the Stacks node API client."""

import base64
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import TOKEN_CONTRACT

from stacks_lakehouse.enrichment.stacks_client import (
    NotFoundError,
    RateLimitError,
    ReadOnlyCallError,
    StacksApiClient,
    StacksApiError,
    decode_json_data_uri,
    split_contract_id,
)
from stacks_lakehouse.errors import RemoteCallTimeout

BASE_URL = "https://node.example"
DEPLOYER, NAME = TOKEN_CONTRACT.split(".")


def ascii_result(text: str) -> str:
    raw = text.encode()
    return "0x07" + "0d" + len(raw).to_bytes(4, "big").hex() + raw.hex()


def make_client(handler, **kwargs) -> StacksApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return StacksApiClient(BASE_URL, http_client=http, max_requests_per_second=1000, **kwargs)


# ============================================================================
# Read-only calls
# ============================================================================


class TestCallReadOnly:
    async def test_decodes_ok_result(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"okay": True, "result": ascii_result("Welshcorgicoin")})

        async with make_client(handler) as client:
            value = await client.call_read_only(TOKEN_CONTRACT, "get-name")

        assert value == "Welshcorgicoin"
        assert seen["path"] == f"/v2/contracts/call-read/{DEPLOYER}/{NAME}/get-name"
        assert seen["body"]["arguments"] == []

    async def test_rejected_call(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"okay": False, "cause": "Unchecked(UndefinedFunction)"})

        async with make_client(handler) as client:
            with pytest.raises(ReadOnlyCallError, match="UndefinedFunction"):
                await client.call_read_only(TOKEN_CONTRACT, "get-name")

    async def test_err_response(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"okay": True, "result": "0x08" + "01" + (1).to_bytes(16, "big").hex()})

        async with make_client(handler) as client:
            with pytest.raises(ReadOnlyCallError, match="err"):
                await client.call_read_only(TOKEN_CONTRACT, "get-token-uri")

    async def test_undecodable_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"okay": True, "result": "0x7f"})

        async with make_client(handler) as client:
            with pytest.raises(StacksApiError, match="undecodable"):
                await client.call_read_only(TOKEN_CONTRACT, "get-name")

    @pytest.mark.parametrize(
        ("status", "error"),
        [(404, NotFoundError), (429, RateLimitError), (500, StacksApiError)],
    )
    async def test_http_errors(self, status: int, error: type[Exception]) -> None:
        async with make_client(lambda request: httpx.Response(status)) as client:
            with pytest.raises(error):
                await client.call_read_only(TOKEN_CONTRACT, "get-name")

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(RemoteCallTimeout):
                await client.call_read_only(TOKEN_CONTRACT, "get-name")

    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(StacksApiError):
                await client.call_read_only(TOKEN_CONTRACT, "get-name")


# ============================================================================
# Interface and source
# ============================================================================


class TestInterfaceAndSource:
    async def test_interface_is_cached(self) -> None:
        abi = {"functions": [{"name": "transfer", "access": "public", "args": []}]}
        redis = AsyncMock()
        redis.get.return_value = None

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == f"/v2/contracts/interface/{DEPLOYER}/{NAME}"
            return httpx.Response(200, json=abi)

        async with make_client(handler, redis=redis) as client:
            assert await client.get_contract_interface(TOKEN_CONTRACT) == abi

        redis.set.assert_awaited_once()
        key, value = redis.set.await_args.args
        assert key == f"stacks:interface:{TOKEN_CONTRACT}"
        assert json.loads(value) == abi

    async def test_cache_hit_skips_request(self) -> None:
        redis = AsyncMock()
        redis.get.return_value = json.dumps({"functions": []}).encode()

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not be called")

        async with make_client(handler, redis=redis) as client:
            assert await client.get_contract_interface(TOKEN_CONTRACT) == {"functions": []}

    async def test_cache_errors_are_ignored(self) -> None:
        redis = AsyncMock()
        redis.get.side_effect = ConnectionError("redis down")
        redis.set.side_effect = ConnectionError("redis down")

        async with make_client(lambda request: httpx.Response(200, json={"functions": []}), redis=redis) as client:
            assert await client.get_contract_interface(TOKEN_CONTRACT) == {"functions": []}

    async def test_source(self) -> None:
        source = "(define-fungible-token welshcorgicoin)"

        async with make_client(lambda request: httpx.Response(200, json={"source": source})) as client:
            assert await client.get_contract_source(TOKEN_CONTRACT) == source

    async def test_source_missing(self) -> None:
        async with make_client(lambda request: httpx.Response(200, json={})) as client:
            with pytest.raises(StacksApiError):
                await client.get_contract_source(TOKEN_CONTRACT)


# ============================================================================
# Metadata documents
# ============================================================================


class TestFetchJson:
    async def test_data_uri(self) -> None:
        encoded = base64.b64encode(json.dumps({"name": "Welsh"}).encode()).decode()

        async with make_client(lambda request: httpx.Response(500)) as client:
            assert await client.fetch_json(f"data:application/json;base64,{encoded}") == {"name": "Welsh"}

    async def test_ipfs_uses_gateway(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"image": "ipfs://QmImage"})

        async with make_client(handler, ipfs_gateway="https://gw.example/ipfs/") as client:
            document = await client.fetch_json("ipfs://ipfs/QmMeta", timeout=2)

        assert seen["url"] == "https://gw.example/ipfs/QmMeta"
        assert document == {"image": "ipfs://QmImage"}

    async def test_not_json(self) -> None:
        async with make_client(lambda request: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(StacksApiError, match="not JSON"):
                await client.fetch_json("https://meta.example/welsh.json")

    async def test_unsupported_scheme(self) -> None:
        async with make_client(lambda request: httpx.Response(200)) as client:
            with pytest.raises(StacksApiError):
                await client.fetch_json("ar://abc")


class TestHelpers:
    def test_split_contract_id(self) -> None:
        assert split_contract_id(TOKEN_CONTRACT) == (DEPLOYER, NAME)
        with pytest.raises(ValueError):
            split_contract_id("STX")

    def test_url_encoded_data_uri(self) -> None:
        assert decode_json_data_uri("data:application/json,%7B%22a%22%3A1%7D") == {"a": 1}
