"""Wires the filesystem core to the MCP tool and resource managers."""

import asyncio
import base64
import logging
from typing import Callable, TypeVar

from pydantic import BaseModel, ValidationError
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from conduit_fs.config import ServerConfig
from conduit_fs.filesystem.edits import EditOperation
from conduit_fs.filesystem.errors import FilesystemError
from conduit_fs.filesystem.index import ResourceIndex
from conduit_fs.filesystem.operations import FileOperations
from conduit_fs.filesystem.paths import PathGuard
from conduit_fs.protocol.content import (
    BlobResourceContents,
    TextContent,
    TextResourceContents,
)
from conduit_fs.protocol.initialization import (
    Implementation,
    ResourcesCapability,
    ServerCapabilities,
    ToolsCapability,
)
from conduit_fs.protocol.resources import ReadResourceRequest, ReadResourceResult
from conduit_fs.protocol.tools import CallToolRequest, CallToolResult, Tool
from conduit_fs.server import schemas
from conduit_fs.server.managers.resources import ResourceManager
from conduit_fs.server.managers.tools import ToolHandler, ToolManager

logger = logging.getLogger(__name__)

TArgs = TypeVar("TArgs", bound=BaseModel)


def error_result(message: str) -> CallToolResult:
    return CallToolResult(
        content=[TextContent(text=f"Error: {message}")], is_error=True
    )


def text_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(text=text)])


class FilesystemServer:
    """The filesystem tools and resources, ready to be served by a session.

    Blocking filesystem work runs on worker threads via `asyncio.to_thread`,
    so a slow disk never stalls the message loop.

    Args:
        config: Allowed directories and server identity.
        observer_factory: Builds the watchdog observer for the resource index.
    """

    def __init__(
        self,
        config: ServerConfig,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ):
        self.config = config
        self.guard = PathGuard(config.allowed_dirs)
        self.index = ResourceIndex(self.guard, observer_factory=observer_factory)
        self.operations = FileOperations(self.guard, self.index)

        self.tools = ToolManager()
        self.resources = ResourceManager(self.index)
        self.resources.read_handler = self._read_resource

        self.info = Implementation(name=config.name, version=config.version)
        self.capabilities = ServerCapabilities(
            resources=ResourcesCapability(subscribe=True, list_changed=True),
            tools=ToolsCapability(list_changed=False),
        )

        self._register_tools()

    async def start(self) -> None:
        """Build the resource index and start watching, off the event loop."""
        await asyncio.to_thread(self.index.initialize, self.config.watch)

    async def close(self) -> None:
        await asyncio.to_thread(self.index.close)

    # ================================
    # Tools
    # ================================

    def _register_tools(self) -> None:
        ops = self.operations
        self._add(
            schemas.READ_FILE,
            schemas.PathArguments,
            lambda a: ops.read_file(a.path),
        )
        self._add(
            schemas.READ_MULTIPLE_FILES,
            schemas.ReadMultipleArguments,
            lambda a: ops.read_multiple_files(a.paths),
        )
        self._add(
            schemas.WRITE_FILE,
            schemas.WriteArguments,
            lambda a: ops.write_file(a.path, a.content),
        )
        self._add(
            schemas.EDIT_FILE,
            schemas.EditArguments,
            lambda a: ops.edit_file(
                a.path,
                [EditOperation(e.old_text, e.new_text) for e in a.edits],
                dry_run=a.dry_run,
            ),
        )
        self._add(
            schemas.CREATE_DIRECTORY,
            schemas.PathArguments,
            lambda a: ops.create_directory(a.path),
        )
        self._add(
            schemas.LIST_DIRECTORY,
            schemas.PathArguments,
            lambda a: ops.list_directory(a.path),
        )
        self._add(
            schemas.DIRECTORY_TREE,
            schemas.PathArguments,
            lambda a: ops.directory_tree(a.path),
        )
        self._add(
            schemas.MOVE_FILE,
            schemas.MoveArguments,
            lambda a: ops.move_file(a.source, a.destination),
        )
        self._add(
            schemas.SEARCH_FILES,
            schemas.SearchArguments,
            lambda a: ops.search_files(a.path, a.pattern, a.exclude_patterns),
        )
        self._add(
            schemas.GET_FILE_INFO,
            schemas.PathArguments,
            lambda a: ops.get_file_info(a.path),
        )
        self._add(
            schemas.LIST_ALLOWED_DIRECTORIES,
            schemas.NoArguments,
            lambda a: ops.list_allowed_directories(),
        )

    def _add(
        self,
        tool: Tool,
        arguments: type[TArgs],
        operation: Callable[[TArgs], str],
    ) -> None:
        self.tools.add_tool(tool, self._handler(arguments, operation))

    def _handler(
        self, arguments: type[TArgs], operation: Callable[[TArgs], str]
    ) -> ToolHandler:
        async def handle(client_id: str, request: CallToolRequest) -> CallToolResult:
            try:
                args = arguments.model_validate(request.arguments)
            except ValidationError as e:
                return error_result(f"Invalid arguments for {request.name}: {e}")

            try:
                text = await asyncio.to_thread(operation, args)
            except FilesystemError as e:
                logger.debug(f"{request.name} failed for {client_id}: {e.message}")
                return error_result(e.message)
            return text_result(text)

        return handle

    # ================================
    # Resources
    # ================================

    async def _read_resource(
        self, client_id: str, request: ReadResourceRequest
    ) -> ReadResourceResult:
        """Text for UTF-8 files, base64 blobs for everything else.

        Raises:
            FilesystemError: If the URI is not a confined, readable file.
        """
        content = await asyncio.to_thread(self.operations.read_resource, request.uri)
        try:
            contents = TextResourceContents(
                uri=content.uri,
                mime_type=content.mime_type,
                text=content.data.decode("utf-8"),
            )
        except UnicodeDecodeError:
            contents = BlobResourceContents(
                uri=content.uri,
                mime_type=content.mime_type,
                blob=base64.b64encode(content.data).decode("ascii"),
            )
        return ReadResourceResult(contents=[contents])
