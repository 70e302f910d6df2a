"""
Tests for the MCP wiring: tools/list, tools/call and process startup.
"""
import pytest
import mcp.types as types

import coingecko_mcp
from conftest import make_response


@pytest.fixture
def server():
    return coingecko_mcp.build_server()


async def call(server, name, arguments=None):
    handler = server.request_handlers[types.CallToolRequest]
    request = types.CallToolRequest(
        method="tools/call",
        params=types.CallToolRequestParams(name=name, arguments=arguments),
    )
    return (await handler(request)).root


@pytest.mark.anyio
async def test_list_tools_returns_registry(server):
    handler = server.request_handlers[types.ListToolsRequest]

    result = (await handler(types.ListToolsRequest(method="tools/list"))).root

    assert result.tools == list(coingecko_mcp.TOOLS)


@pytest.mark.anyio
async def test_call_tool_returns_envelope(server, upstream):
    upstream.return_value = make_response(body={"bitcoin": {"usd": 1}})

    result = await call(server, "coingecko_price", {"ids": ["bitcoin"], "vs_currencies": ["usd"]})

    assert isinstance(result, types.CallToolResult)
    assert result.isError is False
    assert result.content[0].text == '{\n  "bitcoin": {\n    "usd": 1\n  }\n}'


@pytest.mark.anyio
async def test_call_tool_upstream_error(server, upstream):
    upstream.return_value = make_response(500, raw=b"", reason="Internal Server Error")

    result = await call(server, "coingecko_trending")

    assert result.isError is True
    assert result.content[0].text == "CoinGecko API Error: Internal Server Error"


@pytest.mark.anyio
async def test_call_unknown_tool(server, upstream):
    result = await call(server, "coingecko_news", {})

    assert result.isError is True
    assert result.content[0].text == "Unknown tool: coingecko_news"


@pytest.mark.anyio
async def test_schema_rejects_missing_required_field(server, upstream):
    result = await call(server, "coingecko_price", {"vs_currencies": ["usd"]})

    assert result.isError is True
    assert "ids" in result.content[0].text
    upstream.assert_not_called()


def test_http_app_mounts_mcp_endpoint(server):
    app = coingecko_mcp.build_http_app(server)

    assert [route.path for route in app.routes] == ["/mcp"]


def test_unsupported_transport_exits_non_zero(monkeypatch):
    monkeypatch.setattr(coingecko_mcp, "MCP_TRANSPORT", "carrier-pigeon")

    with pytest.raises(SystemExit) as excinfo:
        coingecko_mcp.main()

    assert excinfo.value.code == 1


def test_transport_failure_exits_non_zero(monkeypatch):
    async def refuse(host, port):
        raise OSError("address already in use")

    monkeypatch.setattr(coingecko_mcp, "MCP_TRANSPORT", "streamable-http")
    monkeypatch.setattr(coingecko_mcp, "run_http", refuse)

    with pytest.raises(SystemExit) as excinfo:
        coingecko_mcp.main()

    assert excinfo.value.code == 1
