"""MCP tool client over the Streamable HTTP transport."""

from __future__ import annotations

import itertools
import json
import logging
import threading
from typing import Any

import httpx

from .errors import ToolExecutionError
from .llm.transport import parse_sse_line
from .tools.base import ToolCallResult, ToolSchema

logger = logging.getLogger(__name__)

DEFAULT_MCP_URL = "http://localhost:3350/mcp"
MCP_PROTOCOL_VERSION = "2025-03-26"
SESSION_HEADER = "Mcp-Session-Id"


class McpError(ToolExecutionError):
    """Raised when the MCP server is unreachable or returns a JSON-RPC error."""


class McpClient:
    """JSON-RPC client implementing the tool service interface against an MCP server.

    The ``initialize`` handshake runs lazily on first use. Independent
    conversations may share one client: request ids come from an atomic
    counter, and the lock is held only while the handshake runs.
    """

    def __init__(
        self,
        url: str = DEFAULT_MCP_URL,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        client_name: str = "chatloop",
        client_version: str = "0.1.0",
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._client_info = {"name": client_name, "version": client_version}
        self._ids = itertools.count(1)
        self._init_lock = threading.Lock()
        self._initialized = False
        self._session_id: str | None = None
        self.server_info: dict[str, Any] = {}

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def connect(self) -> dict[str, Any]:
        """Perform the ``initialize`` handshake if it has not happened yet."""

        with self._init_lock:
            if self._initialized:
                return self.server_info
            result = self._request(
                "initialize",
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": self._client_info,
                },
            )
            self.server_info = result.get("serverInfo") or {}
            self._notify("notifications/initialized")
            self._initialized = True
            logger.info("Connected to MCP server %s at %s", self.server_info.get("name", "?"), self.url)
            return self.server_info

    def list_tools(self) -> list[ToolSchema]:
        self.connect()
        tools: list[ToolSchema] = []
        cursor: str | None = None
        while True:
            params = {"cursor": cursor} if cursor else {}
            result = self._request("tools/list", params)
            for item in result.get("tools") or []:
                if isinstance(item, dict) and item.get("name"):
                    tools.append(ToolSchema.from_mcp(item))
            cursor = result.get("nextCursor")
            if not cursor:
                break
        logger.debug("MCP server advertised %d tools", len(tools))
        return tools

    def call_tool(self, name: str, args: dict[str, Any]) -> ToolCallResult:
        self.connect()
        result = self._request("tools/call", {"name": name, "arguments": args})
        return ToolCallResult.from_mcp(result)

    def close(self) -> None:
        if self._session_id is not None:
            try:
                self._client.delete(self.url, headers=self._headers())
            except httpx.HTTPError as exc:
                logger.debug("Unable to terminate MCP session: %s", exc)
            self._session_id = None
        if self._owns_client:
            self._client.close()

    # ------------------------------------------------------------------
    # JSON-RPC plumbing
    # ------------------------------------------------------------------
    def _request(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        request_id = next(self._ids)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        response = self._post(payload)
        data = self._read_message(response, request_id)
        if "error" in data:
            error = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
            raise McpError(f"MCP {method} failed: {error.get('message', 'Unknown RPC error')}")
        result = data.get("result")
        if not isinstance(result, dict):
            raise McpError(f"Malformed MCP response for {method}; missing result")
        return result

    def _notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        payload: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            payload["params"] = params
        self._post(payload)

    def _post(self, payload: dict[str, Any]) -> httpx.Response:
        try:
            response = self._client.post(self.url, json=payload, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise McpError(f"MCP request failed with status {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise McpError(f"MCP request failed: {str(exc) or type(exc).__name__}") from exc
        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self._session_id = session_id
        return response

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json, text/event-stream"}
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        if self._initialized:
            headers["MCP-Protocol-Version"] = MCP_PROTOCOL_VERSION
        return headers

    @staticmethod
    def _read_message(response: httpx.Response, request_id: int) -> dict[str, Any]:
        content_type = response.headers.get("content-type", "")
        if content_type.startswith("text/event-stream"):
            for line in response.text.splitlines():
                message = parse_sse_line(line) if line.startswith("data:") else None
                if message is not None and message.get("id") == request_id:
                    return message
            raise McpError(f"MCP stream ended without a response to request {request_id}")
        try:
            data = response.json()
        except (ValueError, json.JSONDecodeError) as exc:
            raise McpError("Invalid JSON in MCP response") from exc
        if not isinstance(data, dict):
            raise McpError("Malformed MCP response; expected a JSON object")
        return data


__all__ = ["DEFAULT_MCP_URL", "McpClient", "McpError"]
