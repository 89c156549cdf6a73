"""Chat completion client with streamed replies."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Dict, List, Optional, Protocol, Sequence

import httpx

from .errors import ChatServiceError
from .http_client import (
    RETRYABLE_ERRORS,
    ServiceClient,
    error_message,
    raise_for_server_error,
)
from .retry import retry_async

logger = logging.getLogger("realtalk")

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."


class ChatService(Protocol):
    def stream_reply(
        self, messages: Sequence[Dict[str, str]]
    ) -> AsyncIterator[str]:
        ...


class ChatClient(ServiceClient):
    """Sends the whole conversation and yields the reply as it arrives.

    The service may answer with a plain-text body, streamed in arbitrary
    chunks, or with a single ``{"response": ...}`` JSON object. Either way
    callers see a sequence of text fragments in arrival order.
    """

    def __init__(self, url: str, system_prompt: Optional[str] = None, **kwargs) -> None:
        super().__init__(url, **kwargs)
        self.system_prompt = system_prompt

    def build_payload(self, messages: Sequence[Dict[str, str]]) -> Dict[str, List[Dict[str, str]]]:
        payload = [
            {"role": msg["role"], "content": msg["content"]} for msg in messages
        ]
        if self.system_prompt:
            payload.insert(0, {"role": "system", "content": self.system_prompt})
        return {"messages": payload}

    async def _open(self, payload: dict) -> httpx.Response:
        request = self.client.build_request(
            "POST", self.url, json=payload, headers=self.headers()
        )

        async def _send() -> httpx.Response:
            response = await self.client.send(request, stream=True)
            if response.status_code >= 500:
                try:
                    await response.aread()
                finally:
                    await response.aclose()
            raise_for_server_error(response)
            return response

        try:
            return await retry_async(
                _send, self.retry, retry_on=RETRYABLE_ERRORS, label="Chat request"
            )
        except httpx.HTTPStatusError as exc:
            raise ChatServiceError(
                error_message(exc.response, "Failed to generate response"),
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ChatServiceError(f"Chat request failed: {exc}") from exc

    async def stream_reply(
        self, messages: Sequence[Dict[str, str]]
    ) -> AsyncIterator[str]:
        payload = self.build_payload(messages)
        logger.debug("Sending %s messages to %s", len(payload["messages"]), self.url)
        response = await self._open(payload)
        try:
            if response.is_error:
                await response.aread()
                raise ChatServiceError(
                    error_message(response, "Failed to generate response"),
                    status_code=response.status_code,
                )

            content_type = response.headers.get("content-type", "")
            if "application/json" in content_type:
                await response.aread()
                try:
                    data = response.json()
                except ValueError as exc:
                    raise ChatServiceError(
                        "Chat response was not valid JSON.", response.status_code
                    ) from exc
                text = data.get("response") if isinstance(data, dict) else None
                if not text:
                    raise ChatServiceError(
                        "No content in chat response", response.status_code
                    )
                yield str(text)
                return

            received = False
            async for chunk in response.aiter_text():
                if chunk:
                    received = True
                    yield chunk
            if not received:
                raise ChatServiceError("Response body is null", response.status_code)
        except httpx.HTTPError as exc:
            # Any body read, streamed or not, can drop mid-way.
            raise ChatServiceError(f"Chat stream interrupted: {exc}") from exc
        finally:
            await response.aclose()
