"""
campusdb server - main entry point.

This module starts the server with all components:
- Document store (SQLite file or in-memory)
- Entity services on top of the consistency core
- HTTP API served by uvicorn

Usage:
    campusdb-server
    python -m campusdb.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is connected and indexes exist before requests are accepted
    - Seeding only ever inserts into an empty database
    - Graceful shutdown stops the HTTP server before closing the store

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
import uvicorn

from .api import Settings, create_app
from .config import ServerConfig
from .seed import seed_database
from .services import CampusServices
from .store import DocumentStore, create_document_store

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class Server:
    """campusdb server orchestrator.

    Manages the lifecycle of all server components:
    - Document store connection
    - Services and optional seeding
    - uvicorn serving the FastAPI app

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running until request_shutdown()
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: DocumentStore | None = None
        self.services: CampusServices | None = None
        self.http_server: uvicorn.Server | None = None
        self._http_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting campusdb server")
        self.config.log_config()

        try:
            self.store = create_document_store(self.config.storage)
            await self.store.connect()
            logger.info("Document store connected")

            self.services = CampusServices.create(self.store, self.config.consistency)
            await self.services.ensure_indexes()

            if self.config.http.seed_on_start:
                await seed_database(self.services)

            app = create_app(
                services=self.services,
                settings=Settings(cors_origins=list(self.config.http.cors_origins)),
            )
            self.http_server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=self.config.http.host,
                    port=self.config.http.port,
                    log_config=None,
                )
            )
            self._http_task = asyncio.create_task(self.http_server.serve())

            self._running = True
            logger.info(
                "campusdb server started successfully",
                extra={"bind": f"{self.config.http.host}:{self.config.http.port}"},
            )

            # Wait for shutdown signal, or for uvicorn to exit on its own
            shutdown = asyncio.create_task(self._shutdown_event.wait())
            await asyncio.wait({shutdown, self._http_task}, return_when=asyncio.FIRST_COMPLETED)
            shutdown.cancel()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running and self.store is None:
            return

        logger.info("Stopping campusdb server")

        if self.http_server:
            self.http_server.should_exit = True
        if self._http_task:
            await asyncio.gather(self._http_task, return_exceptions=True)
            self._http_task = None

        if self.store:
            await self.store.close()
            self.store = None

        self._running = False
        logger.info("campusdb server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    # Create server
    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
