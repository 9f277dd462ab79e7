"""HTTP adapters: streaming model sessions and a JSON-RPC MCP tool runtime.

Both adapters use :mod:`httpx`. A shared ``httpx.AsyncClient`` may be passed
in (tests inject one backed by ``httpx.MockTransport``); otherwise each
adapter owns a client and closes it in :meth:`aclose`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any
from uuid import uuid4

import httpx

from ...config import TransportConfig
from ...core.adapters.format import adapter_for
from ...core.errors import ToolExecutionError, TransportError
from ...core.message import Vendor, VendorMode
from ..interfaces import SessionTransport, ToolRuntime
from ..schema import SessionPayload

LOGGER = logging.getLogger(__name__)

MCP_SERVER_NAME = "gamemaster-mcp"
MCP_CLIENT_BETA = "mcp-client-2025-04-04"
ERROR_BODY_LIMIT = 4000
_DONE_MARKER = "[DONE]"


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the ``data`` payload of every server-sent event.

    Frames end at a blank line; multiple ``data:`` lines in one frame are
    joined with ``\\n``. Comments, other fields, empty payloads and the
    ``[DONE]`` sentinel are dropped.
    """

    data_lines: list[str] = []
    async for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            payload = "\n".join(data_lines)
            data_lines = []
            if payload and payload.strip() != _DONE_MARKER:
                yield payload
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)

    payload = "\n".join(data_lines)
    if payload and payload.strip() != _DONE_MARKER:
        yield payload


class HttpSessionTransport(SessionTransport):
    """Open streaming sessions against the Anthropic or OpenAI HTTP APIs."""

    def __init__(self, config: TransportConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_request(self, payload: SessionPayload) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return ``(url, headers, body)`` for ``payload`` or raise :class:`TransportError`."""

        mode = VendorMode(payload.vendor_mode)
        vendor = mode.vendor
        adapter = adapter_for(vendor)

        api_key = self._config.api_key(vendor)
        if not api_key:
            raise TransportError("missing_key", f"no API key configured for {vendor.value}")

        url = f"{self._config.base_url(vendor)}{adapter.endpoint_path}"
        body = adapter.build_request_body(payload)
        headers = {
            "content-type": "application/json",
            "accept": "text/event-stream",
            "Idempotency-Key": uuid4().hex,
        }

        if vendor is Vendor.ANTHROPIC:
            headers["x-api-key"] = api_key
            headers["anthropic-version"] = self._config.anthropic_version
        else:
            headers["authorization"] = f"Bearer {api_key}"

        if mode is VendorMode.ANTHROPIC_SERVER_MCP:
            if not self._config.mcp_url:
                raise TransportError(
                    "missing_mcp_url",
                    "set MCP_URL to a public base URL; the provider must reach MCP_URL/mcp/",
                )
            headers["anthropic-beta"] = MCP_CLIENT_BETA
            body["mcp_servers"] = [
                {"type": "url", "name": MCP_SERVER_NAME, "url": f"{self._config.mcp_url}/mcp/"}
            ]

        return url, headers, body

    async def open_session(self, payload: SessionPayload) -> AsyncIterator[str]:
        url, headers, body = self.build_request(payload)
        LOGGER.debug("POST %s model=%s stream=true", url, payload.model)

        request = self._client.build_request("POST", url, headers=headers, json=body)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError("upstream_fetch_failed", str(exc) or type(exc).__name__) from exc

        try:
            if not response.is_success:
                detail = (await response.aread()).decode("utf-8", errors="replace")[:ERROR_BODY_LIMIT]
                raise TransportError(
                    "upstream_non_2xx",
                    f"upstream returned {response.status_code}: {detail}",
                    status=response.status_code,
                )

            try:
                async for data in iter_sse_data(response.aiter_lines()):
                    yield data
            except httpx.HTTPError as exc:
                raise TransportError("stream_interrupted", str(exc) or type(exc).__name__) from exc
        finally:
            await response.aclose()


class McpToolRuntime(ToolRuntime):
    """Call tools on an MCP server over JSON-RPC 2.0 (``POST {mcp_url}/mcp``)."""

    def __init__(
        self,
        mcp_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._endpoint = f"{mcp_url.rstrip('/')}/mcp"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def list_tools(self) -> list[Mapping[str, Any]]:
        result = await self._send("tools/list", None, tool_name="tools/list")
        tools = result.get("tools", [])
        if not isinstance(tools, list):
            raise ToolExecutionError("tools/list", "MCP server returned a non-list tool listing")
        return tools

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        return await self._send("tools/call", {"name": name, "arguments": dict(arguments)}, tool_name=name)

    async def _send(self, method: str, params: dict[str, Any] | None, *, tool_name: str) -> dict[str, Any]:
        self._request_id += 1
        request: dict[str, Any] = {"jsonrpc": "2.0", "id": self._request_id, "method": method}
        if params is not None:
            request["params"] = params

        LOGGER.debug("MCP request %s id=%s", method, self._request_id)
        try:
            response = await self._client.post(
                self._endpoint,
                json=request,
                headers={"accept": "application/json, text/event-stream"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ToolExecutionError(tool_name, f"HTTP error {status}: {exc.response.text[:ERROR_BODY_LIMIT]}") from exc
        except httpx.HTTPError as exc:
            raise ToolExecutionError(tool_name, f"connection error: {exc}") from exc

        data = _decode_rpc_body(response, tool_name)
        error = data.get("error")
        if isinstance(error, Mapping):
            raise ToolExecutionError(
                tool_name,
                f"MCP error {error.get('code', 'unknown')}: {error.get('message', 'unknown error')}",
            )

        result = data.get("result", {})
        if not isinstance(result, dict):
            raise ToolExecutionError(tool_name, "MCP server returned a non-object result")
        return result


def _decode_rpc_body(response: httpx.Response, tool_name: str) -> dict[str, Any]:
    text = response.text
    content_type = response.headers.get("content-type", "")
    if "text/event-stream" in content_type or text.startswith("event:"):
        candidates = [line[5:].strip() for line in text.splitlines() if line.startswith("data:")]
        text = next((candidate for candidate in candidates if candidate), "")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ToolExecutionError(tool_name, f"invalid JSON-RPC response: {exc}") from exc
    if not isinstance(data, dict):
        raise ToolExecutionError(tool_name, "JSON-RPC response must be an object")
    return data


__all__ = ["HttpSessionTransport", "McpToolRuntime", "iter_sse_data"]
