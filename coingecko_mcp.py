#!/usr/bin/env python3
"""
coingecko_mcp.py
CoinGecko MCP server
Exposes: coingecko_price, coingecko_list, coingecko_coin_data, coingecko_trending
Run via: python3 coingecko_mcp.py (stdio), or with MCP_TRANSPORT=streamable-http
to serve on http://127.0.0.1:3000/mcp
"""
import os
import sys
import json
import logging
import contextlib
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, urlencode

import anyio
import requests
import uvicorn
import mcp.types as types
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.routing import Mount
from dotenv import load_dotenv

load_dotenv()
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("coingecko_mcp")

SERVER_NAME = "mcp-server/coingecko"
SERVER_VERSION = "0.1.0"

COINGECKO_API_BASE = os.getenv("COINGECKO_API_BASE", "https://api.coingecko.com/api/v3")
# unset means no timeout
COINGECKO_TIMEOUT = float(os.environ["COINGECKO_TIMEOUT"]) if os.getenv("COINGECKO_TIMEOUT") else None
MCP_TRANSPORT = os.getenv("MCP_TRANSPORT", "stdio")
MCP_HOST = os.getenv("MCP_HOST", "127.0.0.1")
MCP_PORT = int(os.getenv("MCP_PORT", "3000"))

SIMPLE_PRICE_TOOL = types.Tool(
    name="coingecko_price",
    description="Get current price data for cryptocurrencies",
    inputSchema={
        "type": "object",
        "properties": {
            "ids": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of coin IDs (e.g., bitcoin, ethereum, etc.)",
            },
            "vs_currencies": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of currencies to compare against (e.g., usd, eur, etc.)",
            },
            "include_market_cap": {
                "type": "boolean",
                "description": "Include market cap data",
                "default": False,
            },
            "include_24hr_vol": {
                "type": "boolean",
                "description": "Include 24hr volume data",
                "default": False,
            },
            "include_24hr_change": {
                "type": "boolean",
                "description": "Include 24hr price change data",
                "default": False,
            },
        },
        "required": ["ids", "vs_currencies"],
    },
)

COIN_LIST_TOOL = types.Tool(
    name="coingecko_list",
    description="Get list of all supported coins with ids, names, and symbols",
    inputSchema={
        "type": "object",
        "properties": {
            "include_platform": {
                "type": "boolean",
                "description": "Include platform contract addresses (e.g., for tokens on Ethereum)",
                "default": False,
            },
        },
    },
)

COIN_DATA_TOOL = types.Tool(
    name="coingecko_coin_data",
    description="Get current data for a coin (price, market, volume, etc.)",
    inputSchema={
        "type": "object",
        "properties": {
            "id": {
                "type": "string",
                "description": "Coin ID (e.g., bitcoin, ethereum)",
            },
            "vs_currencies": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of currencies to get price data in (e.g., usd, eur, etc.)",
                "default": ["usd"],
            },
        },
        "required": ["id"],
    },
)

TRENDING_COINS_TOOL = types.Tool(
    name="coingecko_trending",
    description="Get trending coins on CoinGecko in the last 24 hours",
    inputSchema={"type": "object", "properties": {}},
)

TOOLS = (
    SIMPLE_PRICE_TOOL,
    COIN_LIST_TOOL,
    COIN_DATA_TOOL,
    TRENDING_COINS_TOOL,
)

# coin detail is always requested without the heavy sections
COIN_DATA_QUERY = {
    "localization": "false",
    "tickers": "false",
    "market_data": "true",
    "community_data": "false",
    "developer_data": "false",
    "sparkline": "false",
}

MARKET_MAPS = ("current_price", "market_cap", "total_volume", "high_24h", "low_24h")
PRICE_CHANGES = ("price_change_percentage_24h", "price_change_percentage_7d", "price_change_percentage_30d")


def _result(text: str, is_error: bool = False) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        isError=is_error,
    )


def _error(exc: Exception) -> types.CallToolResult:
    return _result(f"Error: {str(exc) or repr(exc)}", is_error=True)


def _url(path: str, params: Optional[Dict[str, str]] = None) -> str:
    url = COINGECKO_API_BASE.rstrip("/") + path
    if params:
        # CoinGecko takes comma separated lists, keep the commas readable
        url += "?" + urlencode(params, safe=",")
    return url


def _api_error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason


def _fetch(path: str, params: Optional[Dict[str, str]] = None,
           transform: Optional[Callable[[Any], Any]] = None) -> types.CallToolResult:
    """GET a CoinGecko endpoint and wrap the outcome in a tool result.

    Never raises: HTTP errors, network failures, bad JSON and failures inside
    ``transform`` all come back as an error result.
    """
    try:
        url = _url(path, params)
        logger.debug("GET %s", url)
        response = requests.get(url, timeout=COINGECKO_TIMEOUT)
        if not response.ok:
            message = _api_error_message(response)
            logger.warning("CoinGecko %s failed: %s %s", path, response.status_code, message)
            return _result(f"CoinGecko API Error: {message}", is_error=True)
        data = response.json()
        if transform is not None:
            data = transform(data)
        return _result(json.dumps(data, indent=2, ensure_ascii=False))
    except Exception as e:
        logger.warning("CoinGecko %s raised: %s", path, e)
        return _error(e)


def _copy_present(source: Dict[str, Any], keys) -> Dict[str, Any]:
    return {key: source[key] for key in keys if key in source}


def _project_coin_data(data: Dict[str, Any], vs_currencies: List[str]) -> Dict[str, Any]:
    """Reduce a full /coins/{id} record to the requested currencies.

    A currency is kept only when its current price is truthy; it is then copied
    into every market map that has it. Fields missing upstream stay missing.
    """
    market_data = data.get("market_data") or {}
    sources = {field: market_data.get(field) or {} for field in MARKET_MAPS}
    projected_market: Dict[str, Any] = {field: {} for field in MARKET_MAPS}
    projected_market.update(_copy_present(market_data, PRICE_CHANGES))

    for currency in vs_currencies:
        if not sources["current_price"].get(currency):
            continue
        for field in MARKET_MAPS:
            if currency in sources[field]:
                projected_market[field][currency] = sources[field][currency]

    projected = _copy_present(data, ("id", "symbol", "name"))
    description = data.get("description") or {}
    if "en" in description:
        projected["description"] = description["en"]
    projected.update(_copy_present(data, ("image",)))
    projected["market_data"] = projected_market
    projected.update(_copy_present(data, ("last_updated",)))
    return projected


def simple_price(ids: List[str], vs_currencies: List[str], include_market_cap: bool = False,
                 include_24hr_vol: bool = False, include_24hr_change: bool = False) -> types.CallToolResult:
    params = {"ids": ",".join(ids), "vs_currencies": ",".join(vs_currencies)}
    if include_market_cap:
        params["include_market_cap"] = "true"
    if include_24hr_vol:
        params["include_24hr_vol"] = "true"
    if include_24hr_change:
        params["include_24hr_change"] = "true"
    return _fetch("/simple/price", params)


def coin_list(include_platform: bool = False) -> types.CallToolResult:
    params = {"include_platform": "true"} if include_platform else None
    return _fetch("/coins/list", params)


def coin_data(id: str, vs_currencies: Optional[List[str]] = None) -> types.CallToolResult:
    if vs_currencies is None:
        vs_currencies = ["usd"]
    path = "/coins/" + quote(id, safe="")
    return _fetch(path, COIN_DATA_QUERY, transform=lambda data: _project_coin_data(data, vs_currencies))


def trending() -> types.CallToolResult:
    return _fetch("/search/trending")


HANDLERS: Dict[str, Callable[[Dict[str, Any]], types.CallToolResult]] = {
    "coingecko_price": lambda args: simple_price(
        args.get("ids"),
        args.get("vs_currencies"),
        args.get("include_market_cap", False),
        args.get("include_24hr_vol", False),
        args.get("include_24hr_change", False),
    ),
    "coingecko_list": lambda args: coin_list(args.get("include_platform", False)),
    "coingecko_coin_data": lambda args: coin_data(args.get("id"), args.get("vs_currencies")),
    "coingecko_trending": lambda args: trending(),
}


def call_tool(name: str, arguments: Optional[Dict[str, Any]] = None) -> types.CallToolResult:
    """Route a tool call to its handler. Always returns a result, never raises."""
    try:
        handler = HANDLERS.get(name)
        if handler is None:
            logger.warning("Unknown tool requested: %s", name)
            return _result(f"Unknown tool: {name}", is_error=True)
        return handler(arguments if arguments is not None else {})
    except Exception as e:
        logger.exception("Tool %s failed", name)
        return _error(e)


def build_server() -> Server:
    server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def handle_list_tools() -> List[types.Tool]:
        return list(TOOLS)

    @server.call_tool()
    async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
        # requests blocks, keep it off the event loop
        return await anyio.to_thread.run_sync(call_tool, name, arguments)

    return server


async def run_stdio() -> None:
    server = build_server()
    async with stdio_server() as (read_stream, write_stream):
        logger.info("CoinGecko MCP Server running on stdio")
        await server.run(read_stream, write_stream, server.create_initialization_options())


def build_http_app(server: Server) -> Starlette:
    session_manager = StreamableHTTPSessionManager(
        app=server,
        event_store=None,
        json_response=True,
        stateless=True,
    )

    async def handle_streamable_http(scope, receive, send) -> None:
        await session_manager.handle_request(scope, receive, send)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        async with session_manager.run():
            yield

    return Starlette(routes=[Mount("/mcp", app=handle_streamable_http)], lifespan=lifespan)


async def run_http(host: str = MCP_HOST, port: int = MCP_PORT) -> None:
    app = build_http_app(build_server())
    config = uvicorn.Config(app, host=host, port=port, log_level=logging.getLevelName(logger.getEffectiveLevel()).lower())
    logger.info("CoinGecko MCP Server running on http://%s:%s/mcp", host, port)
    await uvicorn.Server(config).serve()


def main() -> None:
    try:
        if MCP_TRANSPORT == "stdio":
            anyio.run(run_stdio)
        elif MCP_TRANSPORT == "streamable-http":
            anyio.run(run_http, MCP_HOST, MCP_PORT)
        else:
            raise ValueError(f"Unsupported transport: {MCP_TRANSPORT}")
    except Exception:
        logger.exception("Fatal error running server")
        sys.exit(1)


if __name__ == "__main__":
    main()
