"""``python -m mgit_mcp``: run one MGit MCP server on stdin/stdout.

Exit status:
    0  input closed, ``shutdown``/``notifications/exit`` handled, or SIGINT/SIGTERM
    1  invalid configuration, or an unexpected fault while serving
    2  the server could not be constructed
"""

import sys

from mgit_mcp import __version__
from mgit_mcp.config import ServerConfig
from mgit_mcp.logging_config import get_logger, setup_logging
from mgit_mcp.server import create_server, run_stdio_server

logger = get_logger(__name__)

EXIT_CONFIG_ERROR = 1
EXIT_FAULT = 1
EXIT_STARTUP_ERROR = 2


def main():
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        setup_logging(use_json=False)
        logger.error("Configuration error: %s", e)
        sys.exit(EXIT_CONFIG_ERROR)

    # stdout carries protocol envelopes only
    setup_logging(log_level=config.log_level, use_json=False, stream="stderr")
    logger.info(
        "Starting MGit MCP Server %s for repository %s",
        __version__, config.repo_name,
        extra={"transport": "stdio"}
    )

    try:
        server = create_server(config)
    except Exception as e:
        logger.exception("Failed to start server", extra={"error": str(e)})
        sys.exit(EXIT_STARTUP_ERROR)

    try:
        exit_code = run_stdio_server(server)
    except KeyboardInterrupt:
        exit_code = 0
    except Exception as e:
        logger.exception("Uncaught exception while serving")
        server.record_event("uncaughtException", {"error": str(e)}, error=str(e))
        exit_code = EXIT_FAULT

    logger.info("Server process exiting with code %d", exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
