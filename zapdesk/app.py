"""
Main entry point for the zapdesk support console.

Creates the database schema, restores the session pools, starts the console
loop (outbound drain, idle sweep) and serves the attendant console API.
"""

import sys

from zapdesk.utils.logger import logger
from zapdesk.utils.config_loader import config
from zapdesk.utils.database import check_db_connection, init_db


def main():
    """Main entry point for the console application."""
    from zapdesk.api import create_app
    from zapdesk.runtime import ConsoleRuntime

    logger.info("Starting zapdesk support console...")

    init_db()
    if not check_db_connection():
        logger.error("Failed to connect to database. Exiting.")
        sys.exit(1)

    runtime = ConsoleRuntime()
    runtime.start()

    app = create_app(runtime)
    host = config.get("console.api.host", "0.0.0.0")
    port = config.get_int("console.api.port", 3000)

    logger.info(f"Console API listening on {host}:{port}")
    try:
        app.run(host=host, port=port, threaded=True, use_reloader=False)
    finally:
        runtime.stop()


if __name__ == "__main__":
    main()
