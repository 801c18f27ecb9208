"""Trac MCP over HTTP - JSON-RPC 2.0 endpoint plus health check.

POST /mcp accepts one JSON-RPC request (initialize, tools/list, tools/call)
and runs tools through the same handlers as the stdio server.
"""
import logging
import traceback
from typing import Any, Callable, Literal, Optional, Union

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from trac_core.cache import TicketCache
from trac_core.config import Settings, get_settings
from trac_core.fetchers import open_client

from . import __version__
from . import tools
from . import handlers

logger = logging.getLogger("trac-mcp.http")

PROTOCOL_VERSION = "2024-11-05"

# JSON-RPC error codes
PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request envelope."""

    jsonrpc: Literal["2.0"]
    method: str
    params: Optional[Any] = None
    id: Optional[Union[str, int]] = None


def _result(request_id: Optional[Union[str, int]], result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error(request_id: Optional[Union[str, int]], code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def create_app(
    settings: Optional[Settings] = None,
    cache: Optional[TicketCache] = None,
    client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
) -> FastAPI:
    """Build the HTTP transport.

    `client_factory` returns the upstream client for one call (tests inject a
    mock transport through it).
    """
    settings = settings or get_settings()
    cache = cache if cache is not None else TicketCache(max_size=settings.cache_size)
    client_factory = client_factory or (lambda: open_client(settings))

    app = FastAPI(
        title="WordPress Trac MCP Server",
        description="Model Context Protocol server for WordPress Trac",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    async def call_tool(request_id: Optional[Union[str, int]], params: Any) -> dict:
        params = params if isinstance(params, dict) else {}
        name = params.get("name", "")
        arguments = params.get("arguments") or {}
        logger.info(f"Tool call: {name} with arguments: {arguments}")

        async with client_factory() as client:
            try:
                content = await handlers.dispatch(name, arguments, client, cache)
            except handlers.UnknownToolError as e:
                return _error(request_id, INTERNAL_ERROR, f"Error: {e}")
            except KeyError as e:
                return _error(request_id, INTERNAL_ERROR, f"Error: missing required argument {e}")
            except Exception as e:
                logger.error(f"Unexpected error during {name} call: {type(e).__name__}: {e}")
                logger.error(f"  Traceback:\n{traceback.format_exc()}")
                return _error(request_id, INTERNAL_ERROR, f"Error: {type(e).__name__}: {e}")

        return _result(request_id, {
            "content": [item.model_dump(mode="json", exclude_none=True) for item in content],
        })

    async def handle_rpc(rpc: JsonRpcRequest) -> dict:
        if rpc.method == "initialize":
            return _result(rpc.id, {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "WordPress Trac", "version": __version__},
            })
        if rpc.method == "ping":
            return _result(rpc.id, {})
        if rpc.method == "tools/list":
            return _result(rpc.id, {
                "tools": [tool.model_dump(mode="json", exclude_none=True) for tool in tools.get_tools()],
            })
        if rpc.method == "tools/call":
            return await call_tool(rpc.id, rpc.params)
        logger.warning(f"Unknown JSON-RPC method: {rpc.method}")
        return _error(rpc.id, METHOD_NOT_FOUND, f"Method not found: {rpc.method}")

    @app.post("/mcp")
    async def mcp_endpoint(request: Request):
        """JSON-RPC endpoint for MCP clients."""
        try:
            rpc = JsonRpcRequest.model_validate(await request.json())
        except ValueError:
            return JSONResponse(status_code=400, content=_error(None, PARSE_ERROR, "Parse error"))
        if rpc.id is None:
            # Notifications are acknowledged without a body
            logger.debug(f"Notification: {rpc.method}")
            return Response(status_code=202)
        return JSONResponse(content=await handle_rpc(rpc))

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


def run():
    """Console script entry point for the HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(create_app(settings), host=settings.http_host, port=settings.http_port)


if __name__ == "__main__":
    run()
