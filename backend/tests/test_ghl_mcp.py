import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.integrations.ghl_mcp import (
    OFFICIAL_TOOLS,
    GHLMCPClient,
    MCPConnectionError,
    MCPError,
    parse_sse_body,
    unwrap_result,
)


@pytest.fixture(autouse=True)
async def setup_db():
    """Override the global setup_db fixture; these tests don't need a database."""
    yield


MCP_URL = "https://mcp.test/mcp/"

CONTACTS = [{"id": "c1", "firstName": "Brandon"}]


def _wrapped(payload: dict) -> dict:
    return {"content": [{"type": "text", "text": json.dumps(payload)}]}


def _double_wrapped(payload: dict) -> dict:
    return {"content": [{"type": "text", "text": json.dumps(_wrapped(payload))}]}


def _mock_client(mock_cls, response: httpx.Response) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.post.return_value = response
    mock_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
    mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return mock_client


async def _connected_client() -> GHLMCPClient:
    return await GHLMCPClient("pit-token", "loc-123", url=MCP_URL, timeout=5).connect()


def test_official_tool_list():
    assert len(OFFICIAL_TOOLS) == 21
    assert "conversations_send-a-new-message" in OFFICIAL_TOOLS
    assert GHLMCPClient("t", "l").list_tools() == list(OFFICIAL_TOOLS)


def test_unwrap_single_envelope():
    result = _wrapped({"success": True, "data": {"contacts": CONTACTS}})
    assert unwrap_result(result) == CONTACTS


def test_unwrap_double_envelope():
    result = _double_wrapped({"success": True, "data": {"pipelines": [{"id": "p1"}]}})
    assert unwrap_result(result) == {"pipelines": [{"id": "p1"}]}


def test_unwrap_leaves_unrecognised_payload():
    result = {"content": [{"type": "text", "text": "not json"}]}
    assert unwrap_result(result) == result


def test_parse_sse_takes_last_frame():
    body = (
        "event: message\n"
        'data: {"jsonrpc": "2.0", "result": {"partial": true}}\n\n'
        "event: message\n"
        'data: {"jsonrpc": "2.0", "result": {"done": true}}\n\n'
    )
    assert parse_sse_body(body) == {"done": True}


def test_parse_sse_error_frame_raises():
    body = 'data: {"jsonrpc": "2.0", "error": {"code": -32000, "message": "bad token"}}\n'
    with pytest.raises(MCPError, match="bad token"):
        parse_sse_body(body)


def test_parse_sse_without_data_raises():
    with pytest.raises(MCPError, match="No valid JSON data"):
        parse_sse_body("event: ping\n\n")


@pytest.mark.asyncio
async def test_connect_requires_token_and_location():
    with pytest.raises(MCPConnectionError):
        await GHLMCPClient("", "loc-123").connect()
    with pytest.raises(MCPConnectionError):
        await GHLMCPClient("pit-token", "").connect()


@pytest.mark.asyncio
async def test_call_tool_requires_connection():
    client = GHLMCPClient("pit-token", "loc-123", url=MCP_URL)
    with pytest.raises(MCPError, match="not connected"):
        await client.call_tool("contacts_get-contacts")


@pytest.mark.asyncio
async def test_call_tool_json_response():
    client = await _connected_client()
    response = httpx.Response(
        200,
        json={
            "jsonrpc": "2.0",
            "id": 1,
            "result": _wrapped({"success": True, "data": {"contacts": CONTACTS}}),
        },
        request=httpx.Request("POST", MCP_URL),
    )

    with patch("app.integrations.ghl_mcp.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_client(mock_cls, response)
        result = await client.get_contacts({"limit": 10})

    assert result == CONTACTS
    args, kwargs = mock_client.post.call_args
    assert args == (MCP_URL,)
    assert kwargs["json"]["method"] == "tools/call"
    assert kwargs["json"]["params"] == {
        "name": "contacts_get-contacts",
        "arguments": {"limit": 10},
    }
    assert kwargs["headers"]["Authorization"] == "Bearer pit-token"
    assert kwargs["headers"]["locationId"] == "loc-123"
    assert "text/event-stream" in kwargs["headers"]["Accept"]


@pytest.mark.asyncio
async def test_call_tool_sse_response():
    client = await _connected_client()
    frame = {"jsonrpc": "2.0", "result": _double_wrapped({"success": True, "data": [{"id": "t1"}]})}
    response = httpx.Response(
        200,
        text=f"event: message\ndata: {json.dumps(frame)}\n\n",
        headers={"content-type": "text/event-stream"},
        request=httpx.Request("POST", MCP_URL),
    )

    with patch("app.integrations.ghl_mcp.httpx.AsyncClient") as mock_cls:
        _mock_client(mock_cls, response)
        result = await client.get_all_tasks("c1")

    assert result == [{"id": "t1"}]


@pytest.mark.asyncio
async def test_http_error_status_raises():
    client = await _connected_client()
    response = httpx.Response(
        401, text="invalid token", request=httpx.Request("POST", MCP_URL)
    )

    with patch("app.integrations.ghl_mcp.httpx.AsyncClient") as mock_cls:
        _mock_client(mock_cls, response)
        with pytest.raises(MCPError, match="401"):
            await client.get_pipelines()


@pytest.mark.asyncio
async def test_jsonrpc_error_raises():
    client = await _connected_client()
    response = httpx.Response(
        200,
        json={"jsonrpc": "2.0", "error": {"code": -32602, "message": "Invalid params"}},
        request=httpx.Request("POST", MCP_URL),
    )

    with patch("app.integrations.ghl_mcp.httpx.AsyncClient") as mock_cls:
        _mock_client(mock_cls, response)
        with pytest.raises(MCPError, match="Invalid params"):
            await client.get_contact("c1")


@pytest.mark.asyncio
async def test_transport_error_raises_mcp_error():
    client = await _connected_client()

    with patch("app.integrations.ghl_mcp.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_client(mock_cls, None)
        mock_client.post.side_effect = httpx.ConnectError("Connection refused")
        with pytest.raises(MCPError, match="Connection refused"):
            await client.get_pipelines()


@pytest.mark.asyncio
async def test_get_contacts_forwards_only_paging():
    client = await _connected_client()

    with patch.object(client, "_post", new_callable=AsyncMock, return_value=[]) as post:
        await client.get_contacts({"query": "brandon", "limit": 20, "offset": 0})

    post.assert_awaited_once_with("contacts_get-contacts", {"limit": 20})


@pytest.mark.asyncio
async def test_send_message_uses_body_prefixed_arguments():
    client = await _connected_client()

    with patch.object(client, "_post", new_callable=AsyncMock, return_value={}) as post:
        await client.send_message("c1", "Hello there", "Email")

    post.assert_awaited_once_with(
        "conversations_send-a-new-message",
        {"body_type": "Email", "body_contactId": "c1", "body_message": "Hello there"},
    )


@pytest.mark.asyncio
async def test_calendar_events_use_query_prefix():
    client = await _connected_client()

    with patch.object(client, "_post", new_callable=AsyncMock, return_value=[]) as post:
        await client.get_calendar_events("2025-01-01", "2025-02-01", calendarId="cal1", userId=None)

    post.assert_awaited_once_with(
        "calendars_get-calendar-events",
        {
            "query_startTime": "2025-01-01",
            "query_endTime": "2025-02-01",
            "query_calendarId": "cal1",
        },
    )


@pytest.mark.asyncio
async def test_context_manager_disconnects():
    async with GHLMCPClient("pit-token", "loc-123", url=MCP_URL) as client:
        assert client.connected is True
    assert client.connected is False
