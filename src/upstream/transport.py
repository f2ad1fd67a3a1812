"""HTTP transport for the upstream API.

The executor depends only on ``HTTPTransport``; ``HttpxTransport`` is the
single implementation, built on a shared ``httpx.AsyncClient``.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.upstream.errors import UpstreamHTTPError, UpstreamTimeoutError, UpstreamTransportError


class HTTPTransport(ABC):
    """Performs one HTTP call with a timeout."""

    @abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        api_key: str,
        payload: dict | None,
        timeout: float,
    ) -> Any:
        """Send the request and return the decoded JSON body.

        Raises:
            UpstreamHTTPError: non-2xx status.
            UpstreamTimeoutError: the call exceeded ``timeout``.
            UpstreamTransportError: network failure or undecodable body.
        """
        ...

    async def close(self) -> None:
        """Cleanup resources. Override if the transport holds connections."""
        pass


def _error_message(response: httpx.Response) -> str:
    """Extract the error text from the upstream's JSON or plain-text body."""
    text = response.text
    try:
        body = response.json()
    except ValueError:
        return text or response.reason_phrase
    if isinstance(body, dict):
        message = body.get("error") or body.get("message")
        if isinstance(message, str) and message:
            return message
    return text or response.reason_phrase


class HttpxTransport(HTTPTransport):
    def __init__(self):
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
        return self._client

    @staticmethod
    def _build_headers(api_key: str) -> dict:
        return {
            "accept": "application/json",
            "content-type": "application/json",
            "x-api-key": api_key,
        }

    async def send(self, method, url, api_key, payload, timeout):
        client = await self._get_client()
        kwargs: dict[str, Any] = {
            "headers": self._build_headers(api_key),
            "timeout": httpx.Timeout(timeout),
        }
        if method.upper() != "GET" and payload is not None:
            kwargs["json"] = payload

        try:
            response = await client.request(method.upper(), url, **kwargs)
        except httpx.TimeoutException:
            raise UpstreamTimeoutError(timeout)
        except httpx.HTTPError as e:
            raise UpstreamTransportError(f"Cannot reach upstream: {e}")

        if response.status_code >= 400:
            raise UpstreamHTTPError(response.status_code, _error_message(response))

        try:
            return response.json()
        except ValueError:
            raise UpstreamTransportError("Malformed upstream response")

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
