"""Minimal MCP server exposing a ``get_quota`` tool over stdio.

Messages are newline-delimited JSON-RPC 2.0 objects. Only the handful of
methods an MCP client needs to discover and call the tool are supported.
"""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TextIO

from . import __version__
from .models import QuotaReport
from .quota import SUPPORTED_PROVIDERS, fetch_all_rate_limits

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
TOOL_NAME = "get_quota"

METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602

Fetcher = Callable[..., Awaitable[QuotaReport]]

GET_QUOTA_TOOL = {
    "name": TOOL_NAME,
    "description": "Get current quota and rate limit status for AI coding agents "
                   "(Claude, Gemini, Copilot, Codex).",
    "inputSchema": {
        "type": "object",
        "properties": {
            "provider": {
                "type": "string",
                "enum": list(SUPPORTED_PROVIDERS),
                "description": "Optional single provider to check",
            }
        },
    },
}


def _response(request_id: Any, result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: Any, code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def format_quota_text(report: QuotaReport, provider: str | None = None) -> str:
    if provider is not None:
        return f"{provider}: {report.results[provider].display}"
    lines = [f"{name}: {result.display}" for name, result in report.results.items()]
    lines.append(f"summary: {report.summary.status} - {report.summary.message}")
    return "\n".join(lines)


async def _call_tool(request_id: Any, params: dict, fetch: Fetcher) -> dict:
    name = params.get("name")
    if name != TOOL_NAME:
        return _error(request_id, INVALID_PARAMS, f"Unknown tool: {name}")

    arguments = params.get("arguments") or {}
    provider = arguments.get("provider") if isinstance(arguments, dict) else None
    if provider is not None and provider not in SUPPORTED_PROVIDERS:
        return _error(request_id, INVALID_PARAMS, f"Unknown provider: {provider}")

    report = await fetch(providers=[provider] if provider else None)
    return _response(request_id, {
        "content": [{"type": "text", "text": format_quota_text(report, provider)}],
    })


async def handle_message(message: Any, fetch: Fetcher = fetch_all_rate_limits) -> dict | None:
    """Handle one JSON-RPC message; notifications (no id) get no response."""
    if not isinstance(message, dict):
        logger.warning("Ignoring non-object MCP message")
        return None

    method = message.get("method")
    request_id = message.get("id")
    if request_id is None:
        logger.debug("MCP notification: %s", method)
        return None

    if method == "initialize":
        return _response(request_id, {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "ai-quota", "version": __version__},
        })
    if method == "tools/list":
        return _response(request_id, {"tools": [GET_QUOTA_TOOL]})
    if method == "tools/call":
        params = message.get("params")
        return await _call_tool(request_id, params if isinstance(params, dict) else {}, fetch)
    return _error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")


async def serve(stdin: TextIO, stdout: TextIO, fetch: Fetcher = fetch_all_rate_limits) -> None:
    """Answer messages from ``stdin`` until it reaches EOF."""
    while True:
        line = await asyncio.to_thread(stdin.readline)
        if not line:
            break
        if not line.strip():
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning("Skipping invalid MCP line: %s", e)
            continue
        response = await handle_message(message, fetch)
        if response is not None:
            stdout.write(json.dumps(response) + "\n")
            stdout.flush()


def run_mcp_server() -> None:
    logger.info("Starting MCP server on stdio")
    asyncio.run(serve(sys.stdin, sys.stdout))


if __name__ == "__main__":
    run_mcp_server()
