"""Client for OpenAI-compatible chat completion endpoints.

The httpx.AsyncClient is injected so the factory owns its lifecycle and tests
can substitute an ``httpx.MockTransport``.
"""

import asyncio
import random

import httpx
import structlog
from pydantic import BaseModel, Field

from wikigen.errors import GenerationError, LLMRequestError

_RETRYABLE_STATUS = {408, 409, 429}


class ChatMessage(BaseModel):
    role: str
    content: str

    model_config = {"frozen": True}


class Completion(BaseModel):
    """Text returned by the model plus token usage."""

    content: str
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    model_config = {"frozen": True}


class LLMClient:
    """Sends chat completion requests with retry on transient failures.

    Transport errors, timeouts, 408/409/429 and 5xx responses are retried with
    jittered exponential backoff. Other 4xx responses and malformed bodies
    fail immediately.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        model: str,
        api_key: str = "",
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        max_tokens: int = 8192,
        temperature: float = 0.5,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._client = client
        self._url = f"{endpoint.rstrip('/')}/chat/completions"
        self._model = model
        self._api_key = api_key
        self._max_retries = max_retries
        self._backoff_seconds = backoff_seconds
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._logger = logger or structlog.get_logger(__name__)

    async def complete(
        self,
        messages: list[ChatMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> Completion:
        """Run one chat completion.

        Raises:
            LLMRequestError: If the endpoint stays unreachable or rejects the call.
            GenerationError: If the response body is not a usable completion.
        """
        payload = {
            "model": self._model,
            "messages": [m.model_dump() for m in messages],
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
            "stream": False,
        }
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._client.post(self._url, json=payload, headers=headers)
            except httpx.TransportError as exc:
                if attempt > self._max_retries:
                    raise LLMRequestError(f"LLM endpoint unreachable: {exc}") from exc
                await self._backoff(attempt, reason=type(exc).__name__)
                continue

            if response.status_code in _RETRYABLE_STATUS or response.status_code >= 500:
                if attempt > self._max_retries:
                    raise LLMRequestError(
                        f"LLM endpoint returned HTTP {response.status_code} after {attempt} attempts",
                        status_code=response.status_code,
                    )
                await self._backoff(attempt, reason=f"http_{response.status_code}")
                continue

            if response.status_code >= 400:
                raise LLMRequestError(
                    f"LLM endpoint rejected the request with HTTP {response.status_code}: {response.text[:500]}",
                    status_code=response.status_code,
                )
            break

        completion = self._parse(response)
        self._logger.debug(
            "llm_completion_received",
            model=self._model,
            attempts=attempt,
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
        )
        return completion

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = self._backoff_seconds * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
        self._logger.warning("llm_request_retry", attempt=attempt, reason=reason, delay_seconds=round(delay, 2))
        await asyncio.sleep(delay)

    def _parse(self, response: httpx.Response) -> Completion:
        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise GenerationError("LLM response did not contain a completion message") from exc
        if not isinstance(content, str):
            raise GenerationError("LLM completion content was not text")
        usage = body.get("usage") or {}
        return Completion(
            content=content,
            prompt_tokens=int(usage.get("prompt_tokens") or 0),
            completion_tokens=int(usage.get("completion_tokens") or 0),
        )
