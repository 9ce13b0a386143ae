from conduit_fs.transport.stdio.server import StdioServerTransport

__all__ = ["StdioServerTransport"]
