"""
Shared async HTTP plumbing for store clients.

:class:`BaseStoreClient` wraps :mod:`httpx` and is the one place where transport
outcomes become :class:`~storebridge.adapters.base.StoreAPIError` values with a
``retryable`` flag. Clients perform a single wire attempt per call; repeating a
call is the adapter's job, through :func:`~storebridge.adapters.retry.run_with_retry`.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, AsyncIterator, BinaryIO, Iterator, Mapping, MutableMapping, Optional

import httpx

from ...core.logging import get_logger
from ..base import CredentialError, CredentialResolver, StoreAPIError
from ..rate_limit import TokenBucket, create_rate_limiter

DEFAULT_TIMEOUT = 30.0
UPLOAD_TIMEOUT = 600.0
ARTIFACT_CHUNK_SIZE = 1024 * 1024


@dataclass(slots=True)
class BaseStoreClient:
    """
    Base asynchronous HTTP client for one store backend.

    Parameters
    ----------
    store_id:
        Backend identifier attached to every raised error.
    base_url:
        Root URL for the vendor API.
    credentials:
        Shared resolver queried right before each request.
    timeout:
        Per-request timeout in seconds. Timeouts are retryable failures.
    transport:
        Optional :mod:`httpx` transport, mainly for tests.
    rate_limiter:
        Token bucket throttling outbound calls. Defaults to the store's limits.
    """

    store_id: str
    base_url: str
    credentials: CredentialResolver
    timeout: float = DEFAULT_TIMEOUT
    transport: Optional[httpx.AsyncBaseTransport] = None
    rate_limiter: Optional[TokenBucket] = None
    default_headers: MutableMapping[str, str] = field(default_factory=dict)
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.rate_limiter is None:
            self.rate_limiter = create_rate_limiter(self.store_id)
        self.logger = get_logger(
            f"{self.__class__.__module__}.{self.__class__.__name__}",
            extra={"store_id": self.store_id},
        )

    def error(
        self,
        message: str,
        code: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> StoreAPIError:
        return StoreAPIError(message, store_id=self.store_id, code=code, status_code=status_code, retryable=retryable)

    async def token(self) -> str:
        try:
            return await self.credentials.get_token(self.store_id)
        except CredentialError as exc:
            raise self.error(str(exc), "STORE_NOT_CONNECTED") from exc

    def config_value(self, *names: str) -> str:
        """Return the first non-empty credential field among ``names``."""

        config = self.credentials.get_config(self.store_id)
        for name in names:
            value = config.get(name)
            if value:
                return str(value)
        raise self.error(
            f"Missing '{names[0]}' in credentials for store '{self.store_id}'.",
            "STORE_NOT_CONNECTED",
        )

    def _build_client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            headers=dict(self.default_headers),
            transport=self.transport,
            follow_redirects=True,
        )

    def _raise_for_status(self, response: httpx.Response, method: str, url: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 408:
            code, retryable = "TIMEOUT", True
        elif status == 429:
            code, retryable = "RATE_LIMIT_EXCEEDED", True
        elif status >= 500:
            code, retryable = "STORE_API_ERROR", True
        elif status == 401:
            code, retryable = "AUTH_EXPIRED", False
        elif status == 403:
            code, retryable = "AUTH_INSUFFICIENT_PERMISSIONS", False
        else:
            code, retryable = "REQUEST_REJECTED", False
        raise self.error(
            f"HTTP {status} from {self.store_id} for {method} {url}: {response.text[:500]}",
            code,
            status_code=status,
            retryable=retryable,
        )

    async def request(self, method: str, url: str, *, timeout: Optional[float] = None, **kwargs: Any) -> httpx.Response:
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        self.logger.debug("HTTP request", extra={"method": method, "url": url})
        try:
            async with self._build_client(timeout) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise self.error(f"Timed out calling {method} {url}", "TIMEOUT", retryable=True) from exc
        except httpx.TransportError as exc:
            raise self.error(f"Network error calling {method} {url}: {exc}", "NETWORK_ERROR", retryable=True) from exc

        self._raise_for_status(response, method, url)
        self.logger.debug("HTTP response", extra={"status_code": response.status_code, "url": str(response.url)})
        return response

    async def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self.request(method, url, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise self.error(f"Failed to decode JSON from {response.url}: {exc}", "MALFORMED_RESPONSE") from exc

    @contextmanager
    def open_artifact(self, file_path: str) -> Iterator[BinaryIO]:
        """
        Open an artifact for streaming.

        Multipart uploads pass the handle straight to ``files=`` and httpx reads
        it in chunks while sending; raw-body uploads wrap it with
        :func:`iter_chunks`. Artifacts are never loaded into memory whole.
        """

        try:
            handle = open(file_path, "rb")
        except OSError as exc:
            raise self.error(f"Cannot read artifact '{file_path}': {exc}", "ARTIFACT_NOT_FOUND") from exc
        with handle:
            yield handle


async def iter_chunks(handle: BinaryIO, chunk_size: int = ARTIFACT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Async byte stream over an open file; each read runs off the event loop."""

    while True:
        chunk = await asyncio.to_thread(handle.read, chunk_size)
        if not chunk:
            return
        yield chunk


def stream_headers(handle: BinaryIO) -> Mapping[str, str]:
    """Headers for a raw octet-stream body read from ``handle``."""

    return {"Content-Type": "application/octet-stream", "Content-Length": str(os.fstat(handle.fileno()).st_size)}


def bearer(token: str) -> Mapping[str, str]:
    return {"Authorization": f"Bearer {token}"}


def as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def canonical_query(params: Mapping[str, Any]) -> str:
    """Sorted ``k=v`` pairs joined with ``&``; the string signed by RSA and HMAC backends."""

    return "&".join(f"{key}={params[key]}" for key in sorted(params))
