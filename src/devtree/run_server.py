"""Entry point for running the devtree server as a subprocess."""

import logging
import sys
from pathlib import Path

from .core.config import find_config_dir, load_config
from .utils.rich_logging import setup_logging
from .web.server import run_server


def main():
    """Main entry point for the server subprocess.

    Usage: python -m devtree.run_server [port]
    """
    config_dir = find_config_dir()
    config = load_config(config_dir)
    setup_logging(config_dir, config.log_level, use_file=True)
    logger = logging.getLogger(__name__)

    try:
        port = int(sys.argv[1]) if len(sys.argv) > 1 else config.server_port
    except ValueError:
        logger.error(f"Invalid port: {sys.argv[1]}")
        sys.exit(1)

    try:
        run_server(config_dir, port=port)
    except KeyboardInterrupt:
        logger.info("Server stopped")


if __name__ == "__main__":
    main()
