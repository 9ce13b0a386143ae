import asyncio
import logging
import sys

from conduit_fs.config import ConfigError, ServerConfig, configure_logging, load_config
from conduit_fs.server.filesystem import FilesystemServer
from conduit_fs.server.session import ServerSession
from conduit_fs.transport.stdio import StdioServerTransport

logger = logging.getLogger("conduit_fs")


async def serve(config: ServerConfig) -> None:
    server = FilesystemServer(config)
    session = ServerSession(StdioServerTransport(), server)
    logger.info(
        "Serving "
        + ", ".join(str(root) for root in server.guard.allowed_roots)
        + " over stdio"
    )
    await session.run()


def main(argv: list[str] | None = None) -> int:
    try:
        config = load_config(argv)
    except ConfigError as e:
        print(f"conduit-fs: {e}", file=sys.stderr)
        return 2

    configure_logging(config.log_level)
    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
