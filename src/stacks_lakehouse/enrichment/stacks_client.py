"""Stacks node API client with rate limiting and caching.

This module provides the remote collaborator for contract analysis and
token enrichment:
- Read-only contract calls with Clarity result decoding
- Contract interface (ABI) and source lookups
- Token metadata fetches for ``http(s)://``, ``ipfs://`` and ``data:`` URIs
- Optional Redis caching for interface and source lookups
- Token bucket rate limiting against the node API
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

import httpx
from redis.asyncio import Redis

from stacks_lakehouse.enrichment.clarity import ClarityDecodeError, ClarityResponse, decode_clarity_hex
from stacks_lakehouse.errors import RemoteCallFailure, RemoteCallTimeout

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_BASE_URL = "https://api.hiro.so"
DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_MAX_REQUESTS_PER_SECOND = 5
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"

# Any valid principal works as the sender of a read-only call.
DEFAULT_READ_ONLY_SENDER = "SP000000000000000000002Q6VF78"
USER_AGENT = "stacks-lakehouse/0.1"

_DATA_JSON_BASE64 = "data:application/json;base64,"
_DATA_JSON = "data:application/json,"


class StacksApiError(RemoteCallFailure):
    """Base exception for Stacks API client errors."""


class RateLimitError(StacksApiError):
    """Raised when the node API rejects a request for rate limiting."""


class NotFoundError(StacksApiError):
    """Raised when the requested contract, interface or source does not exist."""


class ReadOnlyCallError(StacksApiError):
    """Raised when a read-only call is rejected or returns ``(err ...)``."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> RateLimiter:
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


def split_contract_id(contract_id: str) -> tuple[str, str]:
    """Split ``ADDRESS.name`` into its deployer and contract name."""
    address, sep, name = contract_id.partition(".")
    if not sep or not address or not name:
        raise ValueError(f"Not a contract identifier: {contract_id!r}")
    return address, name


def decode_json_data_uri(uri: str) -> Any:
    """Decode an inline ``data:application/json`` URI."""
    if uri.startswith(_DATA_JSON_BASE64):
        return json.loads(base64.b64decode(uri[len(_DATA_JSON_BASE64) :]))
    if uri.startswith(_DATA_JSON):
        return json.loads(unquote(uri[len(_DATA_JSON) :]))
    raise ValueError(f"Unsupported data URI: {uri[:40]}")


class StacksApiClient:
    """Stacks node API client with caching and rate limiting.

    Example:
        ```python
        async with StacksApiClient("https://api.hiro.so", redis=redis) as client:
            name = await client.call_read_only("SP3K8BC0PPEVCV7NZ6QSRWPQ2JE9E5B6N3PA0KBR9.token-abtc", "get-name")
            abi = await client.get_contract_interface("SP3K8BC0PPEVCV7NZ6QSRWPQ2JE9E5B6N3PA0KBR9.token-abtc")
        ```
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        api_key: str | None = None,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        ipfs_gateway: str = DEFAULT_IPFS_GATEWAY,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Stacks node API root.
            api_key: Optional API key sent as ``x-hiro-api-key``.
            redis: Optional Redis client for caching interface and source lookups.
            cache_ttl_seconds: Cache TTL in seconds.
            max_requests_per_second: Rate limit for node API calls.
            request_timeout: Default HTTP timeout in seconds.
            ipfs_gateway: Gateway prefix used to fetch ``ipfs://`` metadata.
            http_client: Pre-built client (tests inject a mock transport here).
        """
        self._base_url = base_url.rstrip("/")
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._ipfs_gateway = ipfs_gateway
        self._rate_limiter = RateLimiter.create(max_requests_per_second)
        self._owns_http = http_client is None

        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if api_key:
            headers["x-hiro-api-key"] = api_key
        self._http = http_client or httpx.AsyncClient(timeout=request_timeout, headers=headers)
        self._headers = headers

        self._cache_prefix = "stacks:"

    async def __aenter__(self) -> StacksApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _get_cached(self, key: str) -> Any | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(f"{self._cache_prefix}{key}")
            if value is None:
                return None
            if isinstance(value, bytes):
                value = value.decode()
            return json.loads(value)
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: Any) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(f"{self._cache_prefix}{key}", json.dumps(value), ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        await self._rate_limiter.acquire()
        try:
            response = await self._http.request(method, f"{self._base_url}{path}", headers=self._headers, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteCallTimeout(f"{method} {path}: timed out") from e
        except httpx.TransportError as e:
            raise StacksApiError(f"{method} {path}: {e}") from e
        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: not found")
        if response.status_code == 429:
            raise RateLimitError(f"{method} {path}: rate limited")
        if response.status_code >= 400:
            raise StacksApiError(f"{method} {path}: HTTP {response.status_code}")
        return response

    async def call_read_only(
        self,
        contract_id: str,
        function_name: str,
        *,
        arguments: Sequence[str] = (),
        sender: str = DEFAULT_READ_ONLY_SENDER,
    ) -> Any:
        """Call a read-only function and return its decoded, unwrapped result.

        Raises:
            ReadOnlyCallError: If the node rejects the call or the function returns ``(err ...)``.
            NotFoundError: If the contract does not exist.
            StacksApiError: For other HTTP or decoding failures.
        """
        address, name = split_contract_id(contract_id)
        response = await self._request(
            "POST",
            f"/v2/contracts/call-read/{address}/{name}/{function_name}",
            json={"sender": sender, "arguments": list(arguments)},
        )
        body = response.json()
        if not body.get("okay"):
            raise ReadOnlyCallError(f"{contract_id}::{function_name} rejected: {body.get('cause', 'unknown cause')}")
        try:
            value = decode_clarity_hex(str(body.get("result", "")))
        except ClarityDecodeError as e:
            raise StacksApiError(f"{contract_id}::{function_name} returned undecodable result: {e}") from e
        if isinstance(value, ClarityResponse):
            if not value.ok:
                raise ReadOnlyCallError(f"{contract_id}::{function_name} returned (err {value.value!r})")
            return value.value
        return value

    async def get_contract_interface(self, contract_id: str) -> dict[str, Any]:
        """Fetch the parsed interface (functions, variables, maps, tokens) of a contract."""
        cache_key = f"interface:{contract_id}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached

        address, name = split_contract_id(contract_id)
        response = await self._request("GET", f"/v2/contracts/interface/{address}/{name}")
        abi = response.json()
        if not isinstance(abi, dict):
            raise StacksApiError(f"{contract_id}: interface is not an object")
        await self._set_cached(cache_key, abi)
        return abi

    async def get_contract_source(self, contract_id: str) -> str:
        """Fetch the Clarity source text of a contract."""
        cache_key = f"source:{contract_id}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return str(cached)

        address, name = split_contract_id(contract_id)
        response = await self._request("GET", f"/v2/contracts/source/{address}/{name}")
        source = response.json().get("source")
        if not isinstance(source, str):
            raise StacksApiError(f"{contract_id}: source missing from response")
        await self._set_cached(cache_key, source)
        return source

    async def fetch_json(self, uri: str, *, timeout: float | None = None) -> Any:
        """Fetch a JSON document from a metadata URI.

        Inline ``data:`` URIs are decoded locally and ``ipfs://`` URIs are
        rewritten onto the configured gateway.
        """
        uri = uri.strip()
        if uri.startswith("data:"):
            try:
                return decode_json_data_uri(uri)
            except ValueError as e:
                raise StacksApiError(f"Undecodable data URI: {e}") from e
        if uri.startswith("ipfs://"):
            path = uri[len("ipfs://") :]
            if path.startswith("ipfs/"):
                path = path[len("ipfs/") :]
            uri = f"{self._ipfs_gateway}{path}"
        if not uri.startswith(("http://", "https://")):
            raise StacksApiError(f"Unsupported metadata URI scheme: {uri[:40]}")

        kwargs: dict[str, Any] = {"timeout": timeout} if timeout is not None else {}
        try:
            response = await self._http.get(uri, headers=self._headers, follow_redirects=True, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteCallTimeout(f"GET {uri}: timed out") from e
        except httpx.TransportError as e:
            raise StacksApiError(f"GET {uri}: {e}") from e
        if response.status_code == 404:
            raise NotFoundError(f"GET {uri}: not found")
        if response.status_code >= 400:
            raise StacksApiError(f"GET {uri}: HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise StacksApiError(f"GET {uri}: response is not JSON") from e
