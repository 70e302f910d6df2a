"""
Shared fixtures for the CoinGecko MCP tests.

Upstream calls are served from ``requests.Response`` objects built in memory,
nothing here touches the network.
"""
import json
from typing import Any, Optional
from unittest.mock import patch

import pytest
import requests

import coingecko_mcp

API_BASE = "https://api.coingecko.com/api/v3"


def make_response(status: int = 200, body: Any = None, reason: str = "OK", raw: Optional[bytes] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = reason
    response.encoding = "utf-8"
    response._content = raw if raw is not None else json.dumps(body).encode("utf-8")
    return response


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def upstream(monkeypatch):
    """Patch requests.get for the server module and hand back the mock."""
    monkeypatch.setattr(coingecko_mcp, "COINGECKO_API_BASE", API_BASE)
    monkeypatch.setattr(coingecko_mcp, "COINGECKO_TIMEOUT", None)
    with patch.object(coingecko_mcp.requests, "get") as get:
        get.return_value = make_response(body={})
        yield get
