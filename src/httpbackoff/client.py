"""Retrying call-shape wrappers over ``httpx``.

Every method returns a :class:`~httpbackoff.retry.RetryResult` whose
``attempts`` is the number of HTTP calls made (one plus the number of
retries). Request bodies must be re-sendable (``bytes``/``str``/mappings),
since a retry sends the same payload again.

Blocking methods take an optional ``cancel`` :class:`threading.Event`, the
async ones an :class:`asyncio.Event`; setting it during a backoff wait ends
the call with :class:`~httpbackoff.errors.RetryCancelledError`.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable, Mapping
from types import TracebackType
from typing import Any

import httpx

from httpbackoff.backoff import BackoffSettings
from httpbackoff.retry import Notify, RetryPolicy, RetryResult, async_retry, retry


def _with_content_type(kwargs: dict[str, Any], content_type: str | None) -> dict[str, Any]:
    if content_type is None:
        return kwargs
    headers = httpx.Headers(kwargs.pop("headers", None))
    headers["Content-Type"] = content_type
    kwargs["headers"] = headers
    return kwargs


class Client:
    def __init__(
        self,
        settings: BackoffSettings | None = None,
        *,
        policy: RetryPolicy | None = None,
        http_client: httpx.Client | None = None,
        notify: Notify | None = None,
    ) -> None:
        self.settings = settings if settings is not None else BackoffSettings()
        self.policy = policy
        self.notify = notify
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.Client()

    def retry(
        self,
        operation: Callable[[], httpx.Response],
        *,
        cancel: threading.Event | None = None,
    ) -> RetryResult[httpx.Response]:
        return retry(
            operation,
            settings=self.settings,
            policy=self.policy,
            cancel=cancel,
            notify=self.notify,
        )

    def request(
        self,
        method: str,
        url: str,
        *,
        cancel: threading.Event | None = None,
        **kwargs: Any,
    ) -> RetryResult[httpx.Response]:
        return self.retry(lambda: self.http_client.request(method, url, **kwargs), cancel=cancel)

    def get(self, url: str, *, cancel: threading.Event | None = None, **kwargs: Any) -> RetryResult[httpx.Response]:
        return self.request("GET", url, cancel=cancel, **kwargs)

    def head(self, url: str, *, cancel: threading.Event | None = None, **kwargs: Any) -> RetryResult[httpx.Response]:
        return self.request("HEAD", url, cancel=cancel, **kwargs)

    def post(
        self,
        url: str,
        content: bytes | str | None = None,
        *,
        content_type: str | None = None,
        cancel: threading.Event | None = None,
        **kwargs: Any,
    ) -> RetryResult[httpx.Response]:
        return self.request(
            "POST",
            url,
            cancel=cancel,
            content=content,
            **_with_content_type(kwargs, content_type),
        )

    def post_form(
        self,
        url: str,
        data: Mapping[str, Any],
        *,
        cancel: threading.Event | None = None,
        **kwargs: Any,
    ) -> RetryResult[httpx.Response]:
        return self.request("POST", url, cancel=cancel, data=dict(data), **kwargs)

    def send(self, request: httpx.Request, *, cancel: threading.Event | None = None) -> RetryResult[httpx.Response]:
        return self.retry(lambda: self.http_client.send(request), cancel=cancel)

    def round_trip(
        self,
        transport: httpx.BaseTransport,
        request: httpx.Request,
        *,
        cancel: threading.Event | None = None,
    ) -> RetryResult[httpx.Response]:
        """Retry a raw transport exchange, bypassing client redirects and cookies."""

        def exchange() -> httpx.Response:
            response = transport.handle_request(request)
            response.read()
            return response

        return self.retry(exchange, cancel=cancel)

    def close(self) -> None:
        if self._owns_client:
            self.http_client.close()

    def __enter__(self) -> Client:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class AsyncClient:
    def __init__(
        self,
        settings: BackoffSettings | None = None,
        *,
        policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        notify: Notify | None = None,
    ) -> None:
        self.settings = settings if settings is not None else BackoffSettings()
        self.policy = policy
        self.notify = notify
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient()

    async def retry(
        self,
        operation: Callable[[], Awaitable[httpx.Response]],
        *,
        cancel: asyncio.Event | None = None,
    ) -> RetryResult[httpx.Response]:
        return await async_retry(
            operation,
            settings=self.settings,
            policy=self.policy,
            cancel=cancel,
            notify=self.notify,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        cancel: asyncio.Event | None = None,
        **kwargs: Any,
    ) -> RetryResult[httpx.Response]:
        return await self.retry(lambda: self.http_client.request(method, url, **kwargs), cancel=cancel)

    async def get(
        self,
        url: str,
        *,
        cancel: asyncio.Event | None = None,
        **kwargs: Any,
    ) -> RetryResult[httpx.Response]:
        return await self.request("GET", url, cancel=cancel, **kwargs)

    async def head(
        self,
        url: str,
        *,
        cancel: asyncio.Event | None = None,
        **kwargs: Any,
    ) -> RetryResult[httpx.Response]:
        return await self.request("HEAD", url, cancel=cancel, **kwargs)

    async def post(
        self,
        url: str,
        content: bytes | str | None = None,
        *,
        content_type: str | None = None,
        cancel: asyncio.Event | None = None,
        **kwargs: Any,
    ) -> RetryResult[httpx.Response]:
        return await self.request(
            "POST",
            url,
            cancel=cancel,
            content=content,
            **_with_content_type(kwargs, content_type),
        )

    async def post_form(
        self,
        url: str,
        data: Mapping[str, Any],
        *,
        cancel: asyncio.Event | None = None,
        **kwargs: Any,
    ) -> RetryResult[httpx.Response]:
        return await self.request("POST", url, cancel=cancel, data=dict(data), **kwargs)

    async def send(
        self,
        request: httpx.Request,
        *,
        cancel: asyncio.Event | None = None,
    ) -> RetryResult[httpx.Response]:
        return await self.retry(lambda: self.http_client.send(request), cancel=cancel)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> AsyncClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def request(
    method: str,
    url: str,
    *,
    settings: BackoffSettings | None = None,
    policy: RetryPolicy | None = None,
    cancel: threading.Event | None = None,
    **kwargs: Any,
) -> RetryResult[httpx.Response]:
    with Client(settings, policy=policy) as client:
        return client.request(method, url, cancel=cancel, **kwargs)


def get(url: str, **kwargs: Any) -> RetryResult[httpx.Response]:
    return request("GET", url, **kwargs)


def head(url: str, **kwargs: Any) -> RetryResult[httpx.Response]:
    return request("HEAD", url, **kwargs)


def post(
    url: str,
    content: bytes | str | None = None,
    *,
    content_type: str | None = None,
    **kwargs: Any,
) -> RetryResult[httpx.Response]:
    return request("POST", url, content=content, **_with_content_type(kwargs, content_type))


def post_form(url: str, data: Mapping[str, Any], **kwargs: Any) -> RetryResult[httpx.Response]:
    return request("POST", url, data=dict(data), **kwargs)
