"""GoHighLevel MCP client.

Speaks JSON-RPC 2.0 ``tools/call`` over HTTP to the GoHighLevel MCP
endpoint. Responses come back either as plain JSON or as a Server-Sent
Events stream, and the useful payload is wrapped in one or two layers of
``content[].text`` JSON envelopes which are unwrapped here so callers get
the bare data.

Calls are never retried: several tools (send message, add tags, create
contact) have side effects in the CRM.
"""

import json
import logging
import time
from typing import Any

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

OFFICIAL_TOOLS: tuple[str, ...] = (
    "calendars_get-calendar-events",
    "calendars_get-appointment-notes",
    "contacts_get-all-tasks",
    "contacts_add-tags",
    "contacts_remove-tags",
    "contacts_get-contact",
    "contacts_update-contact",
    "contacts_upsert-contact",
    "contacts_create-contact",
    "contacts_get-contacts",
    "conversations_search-conversation",
    "conversations_get-messages",
    "conversations_send-a-new-message",
    "locations_get-location",
    "locations_get-custom-fields",
    "opportunities_search-opportunity",
    "opportunities_get-pipelines",
    "opportunities_get-opportunity",
    "opportunities_update-opportunity",
    "payments_get-order-by-id",
    "payments_list-transactions",
)


class MCPError(Exception):
    """A remote MCP tool call failed."""


class MCPConnectionError(MCPError):
    """The MCP session could not be established."""


def _unwrap_envelope(parsed: Any) -> Any | None:
    if isinstance(parsed, dict) and parsed.get("success") and parsed.get("data"):
        data = parsed["data"]
        if isinstance(data, dict) and data.get("contacts"):
            return data["contacts"]
        return data
    return None


def _iter_text_items(payload: Any):
    content = payload.get("content") if isinstance(payload, dict) else None
    if not isinstance(content, list):
        return
    for item in content:
        if isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
            try:
                yield json.loads(item["text"])
            except (TypeError, ValueError):
                continue


def unwrap_result(result: Any) -> Any:
    """Dig the payload out of GoHighLevel's nested ``content[].text`` envelopes."""
    for parsed in _iter_text_items(result):
        for nested in _iter_text_items(parsed):
            data = _unwrap_envelope(nested)
            if data is not None:
                return data
        data = _unwrap_envelope(parsed)
        if data is not None:
            return data
    return result


def parse_sse_body(body: str) -> Any:
    """Return the last JSON-RPC result carried by a ``text/event-stream`` body."""
    final_data = None
    for line in body.splitlines():
        if not line.startswith("data: "):
            continue
        raw = line[len("data: "):].strip()
        if not raw or raw == "[DONE]":
            continue
        try:
            parsed = json.loads(raw)
        except ValueError:
            continue
        if isinstance(parsed, dict) and parsed.get("error"):
            raise MCPError(f"MCP error: {_error_message(parsed['error'])}")
        if isinstance(parsed, dict) and "result" in parsed:
            final_data = parsed["result"]
        else:
            final_data = parsed
    if final_data is None:
        raise MCPError("No valid JSON data found in SSE stream")
    return final_data


def _error_message(error: Any) -> str:
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return json.dumps(error, default=str)


class GHLMCPClient:
    """Client for the GoHighLevel MCP server, scoped to one location."""

    def __init__(
        self,
        token: str,
        location_id: str,
        url: str | None = None,
        timeout: float | None = None,
    ):
        self.token = token
        self.location_id = location_id
        self.url = url or settings.ghl_mcp_url
        self.timeout = timeout if timeout is not None else settings.ghl_mcp_timeout
        self.connected = False

    async def connect(self) -> "GHLMCPClient":
        if not self.token or not self.location_id:
            raise MCPConnectionError("MCP token and location ID are both required")
        self.connected = True
        logger.debug(
            "GHL MCP client ready: location=%s token=%s...",
            self.location_id,
            self.token[:6],
        )
        return self

    async def disconnect(self) -> None:
        self.connected = False

    async def __aenter__(self) -> "GHLMCPClient":
        return await self.connect()

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    def list_tools(self) -> list[str]:
        return list(OFFICIAL_TOOLS)

    async def call_tool(self, name: str, arguments: dict | None = None) -> Any:
        if not self.connected:
            raise MCPError("MCP client not connected")
        return await self._post(name, arguments or {})

    async def _post(self, tool: str, arguments: dict) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": "tools/call",
            "params": {"name": tool, "arguments": arguments},
            "id": int(time.time() * 1000),
        }
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "Authorization": f"Bearer {self.token}",
            "locationId": self.location_id,
        }
        logger.info("MCP request: tool=%s args=%s", tool, sorted(arguments))

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise MCPError(f"MCP request to {tool} failed: {exc}") from exc

        if response.status_code >= 400:
            raise MCPError(
                f"MCP request failed ({response.status_code}): "
                f"{response.reason_phrase} - {response.text}"
            )

        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            result = parse_sse_body(response.text)
        else:
            try:
                data = response.json()
            except ValueError as exc:
                raise MCPError(f"MCP response for {tool} was not JSON") from exc
            if isinstance(data, dict) and data.get("error"):
                raise MCPError(f"MCP error: {_error_message(data['error'])}")
            result = data.get("result", data) if isinstance(data, dict) else data

        return unwrap_result(result)

    # Contacts

    async def get_contacts(self, params: dict | None = None) -> Any:
        # contacts_get-contacts has no query filter; only paging is forwarded
        params = params or {}
        request = {key: params[key] for key in ("limit", "offset") if params.get(key)}
        return await self.call_tool("contacts_get-contacts", request)

    async def get_contact(self, contact_id: str) -> Any:
        return await self.call_tool("contacts_get-contact", {"contactId": contact_id})

    async def create_contact(self, contact: dict) -> Any:
        return await self.call_tool("contacts_create-contact", contact)

    async def add_tags(self, contact_id: str, tags: list[str]) -> Any:
        return await self.call_tool(
            "contacts_add-tags", {"contactId": contact_id, "tags": tags}
        )

    async def remove_tags(self, contact_id: str, tags: list[str]) -> Any:
        return await self.call_tool(
            "contacts_remove-tags", {"contactId": contact_id, "tags": tags}
        )

    async def get_all_tasks(self, contact_id: str) -> Any:
        return await self.call_tool("contacts_get-all-tasks", {"contactId": contact_id})

    # Opportunities

    async def search_opportunity(self, params: dict) -> Any:
        return await self.call_tool("opportunities_search-opportunity", params)

    async def get_pipelines(self) -> Any:
        return await self.call_tool("opportunities_get-pipelines", {})

    # Calendars

    async def get_calendar_events(self, start_time: str, end_time: str, **filters) -> Any:
        params = {"query_startTime": start_time, "query_endTime": end_time}
        params.update({f"query_{key}": value for key, value in filters.items() if value})
        return await self.call_tool("calendars_get-calendar-events", params)

    # Payments

    async def list_transactions(self, params: dict) -> Any:
        return await self.call_tool(
            "payments_list-transactions",
            {key: value for key, value in params.items() if value is not None},
        )

    # Conversations

    async def search_conversation(self, params: dict) -> Any:
        return await self.call_tool("conversations_search-conversation", params)

    async def send_message(
        self, contact_id: str, message: str, message_type: str = "SMS"
    ) -> Any:
        return await self.call_tool(
            "conversations_send-a-new-message",
            {
                "body_type": message_type,
                "body_contactId": contact_id,
                "body_message": message,
            },
        )
