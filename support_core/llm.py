"""
Minimal client for OpenAI-compatible chat completion endpoints.
"""

from __future__ import annotations

from typing import Any, Sequence

import httpx

from .errors import UpstreamError, UpstreamTimeout
from .logging_config import logger
from .schemas import Completion
from .settings import settings

# Backends that only understand tools through the system prompt.
PROMPT_TOOL_PROVIDERS = {"ollama"}


def _first_choice(payload: dict[str, Any]) -> dict[str, Any]:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    return choices[0]


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def parse_completion(payload: dict[str, Any]) -> Completion:
    choice = _first_choice(payload)
    message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
    content = message.get("content")
    if not isinstance(content, str):
        content = choice.get("text") if isinstance(choice.get("text"), str) else ""
    tool_calls = message.get("tool_calls")

    usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else {}
    tokens_in = _int_or_none(usage.get("prompt_tokens"))
    tokens_out = _int_or_none(usage.get("completion_tokens"))
    total = _int_or_none(usage.get("total_tokens"))
    if total is None:
        total = (tokens_in or 0) + (tokens_out or 0)

    return Completion(
        content=content or "",
        tool_calls=tool_calls if isinstance(tool_calls, list) else [],
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        tokens_total=total,
        stop_reason=choice.get("finish_reason"),
        model=payload.get("model"),
    )


class OpenAICompatibleClient:
    def __init__(
        self,
        *,
        provider: str = "openai",
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        supports_native_tools: bool | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.provider = provider
        self.supports_native_tools = (
            supports_native_tools
            if supports_native_tools is not None
            else provider.lower() not in PROMPT_TOOL_PROVIDERS
        )
        self._base_url = (base_url or settings.llm_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.llm_api_key
        self._model = model or settings.llm_model
        self._timeout = timeout_seconds or settings.llm_timeout_seconds
        self._temperature = settings.llm_temperature if temperature is None else temperature
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def complete(
        self,
        messages: Sequence[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> Completion:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": list(messages),
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        if tools and self.supports_native_tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"

        owns_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout, trust_env=True)
            owns_client = True

        url = f"{self._base_url}/chat/completions"
        try:
            response = await client.post(url, json=body, headers=self._headers(), timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(
                f"completion timed out after {self._timeout:g}s", details={"model": self._model}
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(
                f"completion request failed: {exc}", details={"model": self._model}
            ) from exc
        finally:
            if owns_client:
                await client.aclose()

        if response.status_code >= 400:
            logger.error(
                "completion backend returned %s: %s", response.status_code, response.text[:500]
            )
            raise UpstreamError(
                f"completion backend returned {response.status_code}",
                details={"model": self._model, "status_code": response.status_code},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError("completion backend returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise UpstreamError("completion backend returned an unexpected payload")
        return parse_completion(payload)


__all__ = ["OpenAICompatibleClient", "parse_completion"]
