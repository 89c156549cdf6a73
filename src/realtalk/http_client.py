"""Shared plumbing for the HTTP service clients."""

from __future__ import annotations

from typing import Dict, Optional

import httpx

from .retry import NO_RETRY, RetryPolicy

# Worth another attempt: the request never completed or the server fell over.
RETRYABLE_ERRORS = (httpx.TransportError, httpx.HTTPStatusError)


def error_message(response: httpx.Response, default: str) -> str:
    """Pull ``{"error": ...}`` out of a failed response, if there is one."""
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return f"{default} (HTTP {response.status_code}): {text}" if text else default
    if isinstance(data, dict):
        error = data.get("error")
        details = data.get("details")
        if isinstance(details, dict) and details.get("message"):
            return f"{error or default}: {details['message']}"
        if error:
            return str(error)
    return default


def raise_for_server_error(response: httpx.Response) -> None:
    # 4xx answers are final; only 5xx go back through the retry policy.
    if response.status_code >= 500:
        response.raise_for_status()


class ServiceClient:
    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 60.0,
        api_key: Optional[str] = None,
        retry: RetryPolicy = NO_RETRY,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self.api_key = api_key
        self.retry = retry
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_s, connect=10.0)
            )
        return self._client

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_exc) -> None:
        await self.aclose()
