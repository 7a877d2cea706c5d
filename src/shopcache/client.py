"""Asynchronous HTTP transport for the storefront app backend.

This module provides :class:`ShopClient`, a thin wrapper around
:class:`httpx.AsyncClient` that implements the transport contract the
loaders consume: :meth:`ShopClient.http_get` takes an absolute URL and a
``with_credentials`` flag and returns the decoded JSON body, raising a
typed :class:`~shopcache.exceptions.ShopcacheError` on any non-success
status or network failure.

The helpers :func:`collection_url`, :func:`child_url` and
:func:`asset_url` build the exact URLs the backend serves::

    {app_host}/api/{resource}?shop=...
    {app_host}/api/{parent}/{parent_id}/{child}?shop=...
    {app_host}/api/themes/{theme_id}/assets?asset%5Bkey%5D=...&fields=...&shop=...

No retry or backoff happens here. A failed request surfaces to the
caller, and retrying means calling the loader again.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol
from urllib.parse import quote, urlencode

import httpx

from shopcache.exceptions import (
    AuthError,
    ConfigError,
    ConnectionError_,
    NotFoundError,
    PayloadError,
    ServerError,
)
from shopcache.models import ShopConfig
from shopcache.output import get_output


class HttpGet(Protocol):
    """The transport contract: GET *url* and return its decoded JSON body."""

    async def __call__(self, url: str, with_credentials: bool = True) -> Any: ...


# ------------------------------------------------------------------ #
# URL construction
# ------------------------------------------------------------------ #


def build_query(params: Mapping[str, Any]) -> str:
    """Encode *params* as a query string, preserving insertion order.

    Spaces become ``%20`` and ``!*'()`` stay literal, as Node's
    ``querystring.stringify`` writes them.
    """
    return urlencode(list(params.items()), quote_via=quote, safe="!*'()")


def collection_url(app_host: str, path: str, query: Mapping[str, Any]) -> str:
    return f"{app_host}/api/{path}?{build_query(query)}"


def child_url(
    app_host: str,
    parent_name: str,
    parent_id: Any,
    child_name: str,
    query: Mapping[str, Any],
) -> str:
    return f"{app_host}/api/{parent_name}/{parent_id}/{child_name}?{build_query(query)}"


def asset_url(app_host: str, theme_id: Optional[str], query: Mapping[str, Any]) -> str:
    if not theme_id:
        raise ConfigError("No theme id configured; set SHOPIFY_THEME_ID or --theme")
    return f"{app_host}/api/themes/{theme_id}/assets?{build_query(query)}"


# ------------------------------------------------------------------ #
# Client
# ------------------------------------------------------------------ #


class ShopClient:
    """Asynchronous GET-only client for the app backend.

    Must be used as an async context manager. Cookies received from the
    backend are kept on the underlying :class:`httpx.AsyncClient` and sent
    back only on requests made with ``with_credentials=True``.

    Args:
        config: Shop connection settings (host, shop, request options).
        transport: Optional :mod:`httpx` transport, e.g.
            :class:`httpx.MockTransport` in tests.

    Example::

        async with ShopClient(config) as client:
            body = await client.http_get(collection_url(config.app_host, "products", config.global_query))
    """

    def __init__(
        self,
        config: ShopConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> ShopClient:
        request = self._config.request
        self._client = httpx.AsyncClient(
            timeout=request.timeout,
            verify=request.verify_ssl,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def config(self) -> ShopConfig:
        return self._config

    async def http_get(self, url: str, with_credentials: bool = True) -> Any:
        """GET *url* and return the decoded JSON body.

        Args:
            url: Absolute URL including its query string.
            with_credentials: Send stored cookies with the request.

        Returns:
            The decoded JSON body.

        Raises:
            AuthError: On 401 / 403.
            NotFoundError: On 404.
            ServerError: On any other error status.
            PayloadError: When the body is not JSON.
            ConnectionError_: On network / timeout errors.
        """
        assert self._client is not None, "Client not initialised -- use as async context manager"

        output = get_output()
        output.debug(f"GET {url}")
        try:
            request = self._client.build_request("GET", url)
            if with_credentials:
                response = await self._client.send(request)
            else:
                response = await self._send_without_cookies(request)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise ConnectionError_(f"Connection failed: {exc}") from exc

        self._map_response_error(response)

        try:
            return response.json()
        except ValueError as exc:
            raise PayloadError(f"Response from {url} is not JSON") from exc

    async def _send_without_cookies(self, request: httpx.Request) -> httpx.Response:
        """Send *request* and follow its redirects with no Cookie header on any hop."""
        assert self._client is not None
        for _ in range(self._client.max_redirects + 1):
            request.headers.pop("Cookie", None)
            response = await self._client.send(request, follow_redirects=False)
            if response.next_request is None:
                return response
            await response.aclose()
            request = response.next_request
        raise ServerError(f"Too many redirects for {request.url}")

    async def load_access_token(self) -> Any:
        """Request an API access token for the configured shop.

        Issues ``GET {app_host}/api?shop={shop_domain}`` without credentials.
        """
        url = f"{self._config.app_host}/api?{build_query(self._config.global_query)}"
        return await self.http_get(url, with_credentials=False)

    def _map_response_error(self, response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            if isinstance(detail, dict):
                msg = detail.get("message") or detail.get("error") or detail.get("errors") or ""
            else:
                msg = str(detail)
        except Exception:
            msg = response.text[:200] if response.text else ""

        prefix = f"HTTP {status}"
        full_msg = f"{prefix}: {msg}" if msg else prefix

        if status in (401, 403):
            raise AuthError(full_msg)
        if status == 404:
            raise NotFoundError(full_msg)
        raise ServerError(full_msg)
