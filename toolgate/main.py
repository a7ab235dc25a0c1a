# -*- coding: utf-8 -*-
"""Location: ./toolgate/main.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Toolgate application.
Builds the FastAPI app serving the code runner over the MCP SSE transport and
provides the ``toolgate`` console entry point.
"""

# Standard
from contextlib import asynccontextmanager
from typing import Optional

# Third-Party
from fastapi import FastAPI
import uvicorn

# First-Party
from toolgate import __version__
from toolgate.cache.session_registry import SessionRegistry
from toolgate.config import settings
from toolgate.routers import sse_router
from toolgate.runtimes.embedded_backend import get_interpreter, shutdown_interpreter
from toolgate.services.logging_service import LoggingService
from toolgate.services.mcp_server import CodeRunnerServer

logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise logging and the embedded interpreter; close sessions on exit."""
    await logging_service.initialize()
    logger.info(f"Starting {settings.app_name} {__version__}")
    try:
        await get_interpreter()
    except Exception as e:
        logger.error(f"Embedded interpreter failed to start: {e}")

    yield

    logger.info(f"Shutting down {settings.app_name}")
    await app.state.session_registry.shutdown()
    shutdown_interpreter()
    await logging_service.shutdown()


def create_app(registry: Optional[SessionRegistry] = None, server: Optional[CodeRunnerServer] = None) -> FastAPI:
    """Create the application.

    Args:
        registry: Session registry; a new one by default.
        server: Server bound to new sessions; a new one by default.

    Returns:
        FastAPI: The application.
    """
    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.session_registry = registry or SessionRegistry()
    app.state.mcp_server = server or CodeRunnerServer()
    app.include_router(sse_router.router)

    @app.get("/health")
    async def health():
        """Report liveness, open sessions and backend availability."""
        return {
            "status": "healthy",
            "sessions": len(app.state.session_registry),
            "backends": await app.state.mcp_server.execution_service.health(),
        }

    return app


app = create_app()


def main() -> None:
    """Run the server with uvicorn."""
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
