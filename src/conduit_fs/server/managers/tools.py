"""Tool registration and dispatch for the server session."""

import logging
from copy import deepcopy
from typing import Awaitable, Callable

from conduit_fs.protocol.content import TextContent
from conduit_fs.protocol.tools import (
    CallToolRequest,
    CallToolResult,
    ListToolsRequest,
    ListToolsResult,
    Tool,
)

# Type alias for client-aware tool handlers
ToolHandler = Callable[[str, CallToolRequest], Awaitable[CallToolResult]]


class ToolManager:
    """Routes a named tool call and its argument bag to the registered handler.

    Every outcome of a known tool crosses this boundary as a CallToolResult;
    failure is signaled with `is_error`, never with an exception.
    """

    def __init__(self):
        self.registered: dict[str, Tool] = {}
        self.handlers: dict[str, ToolHandler] = {}
        self.logger = logging.getLogger("conduit_fs.server.managers.tools")

    def add_tool(self, tool: Tool, handler: ToolHandler) -> None:
        """Register a tool with its handler function.

        Your handler should catch expected failures and return CallToolResult
        with is_error=True and a descriptive message. This gives the LLM useful
        context for recovery. Uncaught exceptions become generic "Tool
        execution failed" messages.

        Args:
            tool: Tool definition with name, description, and schema.
            handler: Async function taking the client ID and the request.
        """
        self.registered[tool.name] = tool
        self.handlers[tool.name] = handler

    def get_tools(self) -> dict[str, Tool]:
        return deepcopy(self.registered)

    def remove_tool(self, name: str) -> None:
        """Remove a tool by name. Silently succeeds if it doesn't exist."""
        self.registered.pop(name, None)
        self.handlers.pop(name, None)

    async def handle_list(
        self, client_id: str, request: ListToolsRequest
    ) -> ListToolsResult:
        """List all registered tools. Pagination parameters are ignored."""
        return ListToolsResult(tools=list(self.registered.values()))

    async def handle_call(
        self, client_id: str, request: CallToolRequest
    ) -> CallToolResult:
        """Execute a tool call request.

        Tool execution failures return CallToolResult with is_error=True so the
        LLM can see what went wrong and potentially recover. Unknown tools
        raise KeyError for the session to convert to protocol errors.

        Raises:
            KeyError: If the requested tool is not registered.
        """
        if request.name not in self.handlers:
            raise KeyError(f"Tool '{request.name}' not found")

        handler = self.handlers[request.name]
        try:
            return await handler(client_id, request)
        except Exception as e:
            self.logger.warning(f"Tool '{request.name}' failed: {e}")
            return CallToolResult(
                content=[TextContent(text=f"Tool execution failed: {str(e)}")],
                is_error=True,
            )
