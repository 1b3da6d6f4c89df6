"""Timed async HTTP client wrapping ``aiohttp.ClientSession``.

The client never raises for transport problems. Connection errors and
timeouts come back as a :class:`Response` with ``status == 0`` and ``error``
set, so a virtual user keeps going and the failure becomes a metric sample.
"""

from __future__ import annotations

import json as jsonlib
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import aiohttp

if TYPE_CHECKING:
    from loadramp._internal.types import Headers


@dataclass(slots=True)
class Response:
    """Outcome of one HTTP request.

    Attributes:
        method: HTTP method sent.
        url: Full request URL.
        status: HTTP status code, or 0 when no response was received.
        duration_ms: Time from sending the request to reading the full body.
        body: Raw response body.
        headers: Response headers.
        error: ``"ExceptionType: message"`` when the request failed at the
            transport level, otherwise None.
    """

    method: str
    url: str
    status: int = 0
    duration_ms: float = 0.0
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        """True when a response arrived with a 2xx/3xx status."""
        return self.error is None and 200 <= self.status < 400

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            ValueError: If the body is not valid JSON.
        """
        return jsonlib.loads(self.body)


# Seen by steps that run before any request in the iteration.
EMPTY_RESPONSE = Response(method="", url="", error="no request made")


class HttpClient:
    """Async HTTP client shared by every virtual user of a run.

    Attributes:
        base_url: Base URL prepended to relative request paths.
        headers: Headers applied to every request; per-request headers win.
    """

    def __init__(
        self,
        base_url: str,
        headers: Headers | None = None,
        *,
        timeout: float = 30.0,
        pool_size: int = 100,
    ) -> None:
        """Initialize the HTTP client.

        Args:
            base_url: Base URL prepended to relative request paths.
            headers: Default headers applied to every request.
            timeout: Default total request timeout in seconds.
            pool_size: Maximum simultaneous connections.
        """
        self.base_url = base_url.rstrip("/")
        self.headers: Headers = dict(headers or {})
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._pool_size = pool_size
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HttpClient:
        """Open the underlying aiohttp session."""
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            connector=aiohttp.TCPConnector(limit=self._pool_size),
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    def url_for(self, path: str) -> str:
        """Return *path* unchanged if absolute, else joined to ``base_url``."""
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    async def get(self, path: str, **kwargs: Any) -> Response:
        """Send a GET request. See :meth:`request`."""
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Response:
        """Send a POST request. See :meth:`request`."""
        return await self.request("POST", path, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Headers | None = None,
        body: str | bytes | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> Response:
        """Send a request and read the whole body.

        Args:
            method: HTTP method.
            path: Relative path (joined to ``base_url``) or absolute URL.
            headers: Extra headers for this request only.
            body: Raw request body.
            json: Object to send as a JSON body; ignored when *body* is set.
            timeout: Per-request timeout override in seconds.

        Returns:
            The response, or an error response if the transport failed.

        Raises:
            RuntimeError: If the client is used outside of an async context
                manager.
        """
        if self._session is None:
            msg = "HttpClient must be used as an async context manager"
            raise RuntimeError(msg)

        url = self.url_for(path)
        merged_headers = {**self.headers, **(headers or {})}
        kwargs: dict[str, Any] = {"headers": merged_headers}
        if body is not None:
            kwargs["data"] = body
        elif json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        start = time.monotonic()
        try:
            async with self._session.request(method, url, **kwargs) as resp:
                payload = await resp.read()
                return Response(
                    method=method,
                    url=url,
                    status=resp.status,
                    duration_ms=(time.monotonic() - start) * 1000,
                    body=payload,
                    headers=dict(resp.headers),
                )
        except (aiohttp.ClientError, TimeoutError) as exc:
            return Response(
                method=method,
                url=url,
                duration_ms=(time.monotonic() - start) * 1000,
                error=f"{type(exc).__name__}: {exc}",
            )
