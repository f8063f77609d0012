"""
JSON-RPC 2.0 dispatcher implementing the MCP methods used by the webhook and
HTTP transports: initialize, ping, tools/list and tools/call.
"""

import json
from typing import Any, Dict, List, Optional, Union

from ..core.config import config
from ..utils.logger import get_logger
from ..utils.metrics import record_rpc_request, track_tool_call
from .tools import ToolError, ToolRegistry, create_tool_registry

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class RPCError(Exception):
    """Error answered as a JSON-RPC error object"""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


def rpc_result(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def rpc_error(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": RPCError(code, message, data).to_dict()}


def text_content(payload: Any, is_error: bool = False) -> Dict[str, Any]:
    """Wrap a tool payload in the MCP tool result shape"""
    text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False, indent=2, default=str)
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


class McpDispatcher:
    """
    Stateless JSON-RPC handler for MCP requests.

    Every request is answered independently; a list payload is treated as a
    batch and answered with a list. Notifications (requests without an id)
    are executed but not answered.
    """

    def __init__(self, registry: ToolRegistry = None):
        self.registry = registry or create_tool_registry()
        self.logger = get_logger("rpc.dispatcher")
        self._methods = {
            "initialize": self._initialize,
            "ping": self._empty,
            "notifications/initialized": self._empty,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    @property
    def methods(self) -> List[str]:
        return list(self._methods)

    async def handle(self, payload: Any) -> Optional[Union[Dict[str, Any], List[Dict[str, Any]]]]:
        """
        Answer a decoded JSON-RPC payload.

        Args:
            payload: A request object or a batch list

        Returns:
            Response object, a list of responses for a batch, or None when
            the payload held only notifications
        """
        if isinstance(payload, list):
            if not payload:
                return rpc_error(None, INVALID_REQUEST, "Invalid Request: empty batch")
            responses = [await self.handle_request(item) for item in payload]
            responses = [response for response in responses if response is not None]
            return responses or None
        return await self.handle_request(payload)

    async def handle_text(self, body: Union[str, bytes]) -> Optional[Union[Dict[str, Any], List[Dict[str, Any]]]]:
        """Decode a raw request body and answer it"""
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            record_rpc_request("unknown", "parse_error")
            return rpc_error(None, PARSE_ERROR, f"Parse error: {e}")
        return await self.handle(payload)

    async def handle_request(self, request: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(request, dict):
            record_rpc_request("unknown", "invalid_request")
            return rpc_error(None, INVALID_REQUEST, "Invalid Request")

        request_id = request.get("id")
        is_notification = "id" not in request
        method = request.get("method")
        if not isinstance(method, str) or not method:
            record_rpc_request("unknown", "invalid_request")
            return rpc_error(request_id, INVALID_REQUEST, "Invalid Request: method is required")

        handler = self._methods.get(method)
        if handler is None:
            self.logger.warning(f"Unknown MCP method: {method}")
            record_rpc_request("unknown", "method_not_found")
            if is_notification:
                return None
            return rpc_error(request_id, METHOD_NOT_FOUND, f"Method '{method}' not found")

        params = request.get("params")
        if params is None:
            params = {}

        self.logger.info(f"MCP request: {method}", extra={"rpc_id": request_id})
        try:
            result = await handler(params)
        except RPCError as e:
            record_rpc_request(method, "error")
            response = rpc_error(request_id, e.code, e.message, e.data)
        except Exception as e:
            self.logger.error(f"MCP method {method} failed: {e}", exc_info=True)
            record_rpc_request(method, "error")
            response = rpc_error(request_id, INTERNAL_ERROR, f"Internal error: {e}")
        else:
            record_rpc_request(method, "success")
            response = rpc_result(request_id, result)

        return None if is_notification else response

    # Methods

    async def _initialize(self, params: Dict[str, Any]) -> Dict[str, Any]:
        client = params.get("clientInfo") if isinstance(params, dict) else None
        if client:
            self.logger.info(f"MCP client connected: {client.get('name')} {client.get('version', '')}".strip())
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {
                "name": config.server.service_name,
                "version": config.server.version,
            },
        }

    async def _empty(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {}

    async def _list_tools(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return {"tools": [tool.to_dict() for tool in self.registry.list_tools()]}

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(params, dict):
            raise RPCError(INVALID_PARAMS, "Invalid params: expected an object")

        name = params.get("name")
        if not isinstance(name, str) or not name:
            raise RPCError(INVALID_PARAMS, "Invalid params: tool name is required")
        if name not in self.registry:
            raise RPCError(METHOD_NOT_FOUND, f"Tool '{name}' not found")

        return await self.call_tool(name, params.get("arguments"))

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Run a known tool and wrap its outcome; tool failures become isError results"""
        with track_tool_call(name) as timer:
            try:
                payload = await self.registry.call(name, arguments)
            except ToolError as e:
                timer.fail()
                self.logger.warning(f"Tool {name} returned an error: {e}")
                return text_content({"error": str(e)}, is_error=True)

        self.logger.info(f"Tool {name} completed")
        return text_content(payload)

    async def close(self):
        await self.registry.close()
