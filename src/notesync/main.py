#!/usr/bin/env python
"""Main entry point for the notesync MCP server."""
import argparse
import atexit
import logging
import os
import sys
from pathlib import Path

from notesync.config import config
from notesync.models.db_models import init_db, init_index_db
from notesync.observability import configure_logging, metrics
from notesync.server.mcp_server import NoteSyncMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="notesync MCP Server")
    parser.add_argument(
        "--database-path",
        help="SQLite file of the authoritative note store",
        type=str,
        default=os.environ.get("NOTESYNC_DATABASE_PATH")
    )
    parser.add_argument(
        "--index-path",
        help="SQLite file of the search index",
        type=str,
        default=os.environ.get("NOTESYNC_INDEX_PATH")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=config.log_level
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.index_path:
        config.index_path = Path(args.index_path)
    config.log_level = args.log_level


def _save_metrics_on_exit():
    if metrics.save_metrics():
        logging.getLogger(__name__).info("Metrics saved to disk on shutdown")


def main(argv=None):
    """Run the notesync MCP server."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        metrics.set_metrics_file(log_dir.parent / "metrics.json")
        atexit.register(_save_metrics_on_exit)

    # Both stores are created up front and shared by every repository
    try:
        logger.info(f"Using note store: {config.get_db_url()}")
        engine = init_db()
        logger.info(f"Using search index: {config.get_index_url()}")
        index_engine = init_index_db()
    except Exception as e:
        logger.error(f"Failed to initialize databases: {e}")
        sys.exit(1)

    try:
        logger.info("Starting notesync MCP server")
        server = NoteSyncMcpServer(engine=engine, index_engine=index_engine)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
