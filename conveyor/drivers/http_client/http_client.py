"""HTTP client driver using httpx.AsyncClient.

Used by the adapters that talk to HTTP collaborators (analysis server,
artifact repository). Responses are parsed into a plain dict so adapters do
not depend on httpx types.
"""

from __future__ import annotations

from typing import Any

import httpx

from conveyor.kernel.exceptions import HttpClientError
from conveyor.kernel.logging import get_logger

logger = get_logger(__name__)


class HttpClientDriver:
    """Async HTTP calls with connection pooling, timeouts and default auth.

    Parameters
    ----------
    base_url : str
        Optional base URL prefix for all requests.
    timeout : float
        Request timeout in seconds (default: 30.0).
    headers : dict[str, str] | None
        Default headers included in every request.
    bearer_token : str | None
        Adds ``Authorization: Bearer <token>`` to default headers.
    basic_auth_username, basic_auth_password : str | None
        HTTP Basic Auth credentials; both must be given.
    raise_for_status : bool
        If True, raise :class:`HttpClientError` on non-2xx responses.
    transport : httpx.AsyncBaseTransport | None
        Custom transport (``httpx.MockTransport`` in tests).

    Examples
    --------
    Basic usage::

        async with HttpClientDriver(base_url="https://sonar.example.com") as http:
            result = await http.aget("/api/ce/task", params={"id": task_id})
            result["body"]["task"]["status"]
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        bearer_token: str | None = None,
        basic_auth_username: str | None = None,
        basic_auth_password: str | None = None,
        follow_redirects: bool = True,
        raise_for_status: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
        **kwargs: Any,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._default_headers = dict(headers) if headers else {}
        self._follow_redirects = follow_redirects
        self._raise_for_status = raise_for_status
        self._client: httpx.AsyncClient | None = None
        self._transport = transport

        if bearer_token:
            self._default_headers["Authorization"] = f"Bearer {bearer_token}"

        self._auth: httpx.BasicAuth | None = None
        if basic_auth_username is not None and basic_auth_password is not None:
            self._auth = httpx.BasicAuth(basic_auth_username, basic_auth_password)

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily create the httpx client on first use."""
        if self._client is None:
            kwargs: dict[str, Any] = {
                "base_url": self._base_url,
                "timeout": self._timeout,
                "headers": self._default_headers,
                "follow_redirects": self._follow_redirects,
            }
            if self._auth is not None:
                kwargs["auth"] = self._auth
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    def _parse_response(self, response: httpx.Response) -> dict[str, Any]:
        """Parse a response into ``{"status_code", "headers", "body"}``.

        ``body`` is parsed JSON when the content type is JSON, else raw text.
        """
        content_type = response.headers.get("content-type", "")
        body: Any
        if "application/json" in content_type:
            try:
                body = response.json()
            except ValueError:
                body = response.text
        else:
            body = response.text
        return {
            "status_code": response.status_code,
            "headers": dict(response.headers),
            "body": body,
        }

    def _check_status(self, result: dict[str, Any]) -> dict[str, Any]:
        if self._raise_for_status:
            status = result["status_code"]
            if status < 200 or status >= 300:
                raise HttpClientError(
                    status_code=status,
                    body=result["body"],
                    message=f"HTTP {status}: {str(result['body'])[:200]}",
                )
        return result

    async def arequest(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Make an async request of any method."""
        client = self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            logger.debug(f"{method} {url} failed: {e}")
            raise HttpClientError(None, message=f"{method} {url} failed: {e}") from e
        return self._check_status(self._parse_response(response))

    async def aget(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make an async GET request."""
        return await self.arequest("GET", url, headers=headers, params=params, **kwargs)

    async def apost(
        self,
        url: str,
        json: dict[str, Any] | None = None,
        data: Any | None = None,
        files: Any | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make an async POST request (JSON, form data or multipart files)."""
        return await self.arequest(
            "POST", url, json=json, data=data, files=files, headers=headers, **kwargs
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpClientDriver:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
