"""
Outbound tool execution via client-configured webhooks.
"""

from __future__ import annotations

import json
import time
from typing import Any

import httpx

from .logging_config import logger
from .schemas import ToolDefinition, ToolResult
from .settings import settings

TOOL_RESULT_MAX_CHARS = 5000
MAX_RESULT_ITEMS = 20
ERROR_TEXT_EXCERPT = 200

_MESSAGE_FIELDS = (
    "message",
    "msg",
    "description",
    "text",
    "statusMessage",
    "status_message",
    "responseMessage",
    "display_message",
    "displayMessage",
    "userMessage",
)
_DATA_FIELDS = (
    "data",
    "result",
    "results",
    "payload",
    "body",
    "response",
    "content",
    "items",
    "records",
    "output",
)
_META_FIELDS = ("success", "ok", "status", "statusCode", "timestamp")


def _truncate(text: str, limit: int = TOOL_RESULT_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


def _is_error_payload(payload: dict[str, Any]) -> bool:
    if payload.get("error") or payload.get("err") or payload.get("errorMessage"):
        return True
    if payload.get("success") is False or payload.get("ok") is False:
        return True
    if str(payload.get("status") or "").lower() in ("error", "failed", "failure", "fail"):
        return True
    for key in ("statusCode", "code"):
        code = payload.get(key)
        if isinstance(code, int) and not isinstance(code, bool) and code >= 400:
            return True
    return False


def format_result_for_llm(data: Any) -> str:
    """Render a webhook response as compact text the model can read."""
    if data is None or data == "":
        return "No data returned from tool execution."
    if isinstance(data, str):
        return _truncate(data)
    if isinstance(data, list):
        if not data:
            return "No results found."
        rendered = json.dumps(data[:MAX_RESULT_ITEMS], ensure_ascii=False, indent=2, default=str)
        if len(data) > MAX_RESULT_ITEMS:
            rendered += f"\n... and {len(data) - MAX_RESULT_ITEMS} more items (truncated)"
        return _truncate(rendered)
    if isinstance(data, dict):
        if _is_error_payload(data):
            message = (
                data.get("error")
                or data.get("errorMessage")
                or data.get("err")
                or data.get("message")
                or "Unknown error"
            )
            return f"Error: {message}"

        message = next(
            (data[f] for f in _MESSAGE_FIELDS if isinstance(data.get(f), str) and data[f]), None
        )
        payload = next((data[f] for f in _DATA_FIELDS if f in data), None)
        if payload is None:
            payload = {k: v for k, v in data.items() if k not in _META_FIELDS} or data

        if message:
            text = message
            if isinstance(payload, (dict, list)) and payload != message:
                details = json.dumps(payload, ensure_ascii=False, indent=2, default=str)
                if len(details) < 500:
                    text += "\n\nDetails:\n" + details
            return _truncate(text)
        if isinstance(payload, str):
            return _truncate(payload)
        return _truncate(json.dumps(payload, ensure_ascii=False, indent=2, default=str))
    return _truncate(str(data))


class HttpToolExecutor:
    """
    Runs a tool by POSTing its arguments as JSON to the tool's webhook.

    Never raises for webhook failures; timeouts, transport errors and
    non-2xx answers come back as a failed ToolResult.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds or settings.tool_webhook_timeout_seconds

    async def invoke(
        self,
        tool: ToolDefinition,
        arguments: dict[str, Any],
        *,
        client_id: str,
        conversation_id: str,
    ) -> ToolResult:
        if not tool.webhook_url:
            return ToolResult(ok=False, error=f"tool {tool.name} has no webhook configured")

        timeout = tool.timeout_seconds or self._timeout
        owns_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=timeout, trust_env=True)
            owns_client = True

        headers = {
            "Content-Type": "application/json",
            "X-Client-Id": client_id,
            "X-Conversation-Id": conversation_id,
        }
        started = time.perf_counter()
        try:
            response = await client.post(
                tool.webhook_url, json=arguments, headers=headers, timeout=timeout
            )
        except httpx.TimeoutException:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.warning("tool %s webhook timed out after %ss", tool.name, timeout)
            return ToolResult(
                ok=False,
                error=f"Tool execution timed out after {timeout:g}s",
                duration_ms=duration_ms,
                timed_out=True,
            )
        except httpx.HTTPError as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.warning("tool %s webhook failed: %s", tool.name, exc)
            return ToolResult(ok=False, error=str(exc) or exc.__class__.__name__, duration_ms=duration_ms)
        finally:
            if owns_client:
                await client.aclose()

        duration_ms = int((time.perf_counter() - started) * 1000)
        if response.status_code >= 400:
            excerpt = response.text[:ERROR_TEXT_EXCERPT]
            logger.warning(
                "tool %s webhook returned %s: %s", tool.name, response.status_code, excerpt
            )
            return ToolResult(
                ok=False,
                error=f"webhook returned {response.status_code}: {excerpt}",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                data: Any = response.json() if response.content else {}
            except ValueError:
                data = {"error": "Invalid JSON response", "raw": response.text[:ERROR_TEXT_EXCERPT]}
        else:
            data = response.text

        logger.info("tool %s webhook succeeded in %sms", tool.name, duration_ms)
        return ToolResult(
            ok=True, data=data, status_code=response.status_code, duration_ms=duration_ms
        )


__all__ = ["HttpToolExecutor", "format_result_for_llm"]
