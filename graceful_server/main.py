import argparse
import logging
import sys
from typing import List, Optional

from fastapi import FastAPI
from pydantic import ValidationError

from graceful_server.config import LOG_LEVELS, ServerConfig, load_config
from graceful_server.routers import api_router, shutdown_router
from graceful_server.services.coordinator import ShutdownCoordinator
from graceful_server.services.server import ListenerStartError, Server
from graceful_server.utils.middleware import InFlightMiddleware, WriteTimeoutMiddleware

logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 30.0


def create_app(server: Server) -> FastAPI:
    app = FastAPI(title="Graceful Server", version="1.0.0")
    app.state.server = server

    # Added last runs first: in-flight counting wraps the write timeout
    app.add_middleware(WriteTimeoutMiddleware, timeout=server.config.write_timeout)
    app.add_middleware(InFlightMiddleware, tracker=server.in_flight)

    app.include_router(api_router.router)
    app.include_router(shutdown_router.router)
    return app


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run(config: ServerConfig) -> int:
    """
    Serve until a shutdown request, then drain and stop.

    Returns the process exit code: 0 after a clean shutdown (also when the
    drain hit its deadline), 1 when the listener could not be started.
    """
    server = Server(config, create_app)
    try:
        server.start()
    except ListenerStartError as e:
        logger.error(f"Listen and serve: {e}")
        return 1

    # Signals arriving during startup queue a shutdown instead of killing the process
    coordinator = ShutdownCoordinator(server)
    coordinator.install_signal_handlers()
    if not server.wait_started(STARTUP_TIMEOUT):
        coordinator.restore_signal_handlers()
        logger.error("Server failed to start")
        return 1
    logger.info(f"Server listening on {server.address}")

    coordinator.wait_shutdown()

    server.wait_stopped()
    logger.info("DONE!")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HTTP server with graceful shutdown")
    parser.add_argument("--addr", help="listen address as host:port (default :8080)")
    parser.add_argument("--read-timeout", type=float, help="keep-alive read timeout in seconds")
    parser.add_argument("--write-timeout", type=float, help="per-request response timeout in seconds")
    parser.add_argument("--shutdown-timeout", type=float, help="drain deadline in seconds")
    parser.add_argument("--log-level", choices=LOG_LEVELS, help="logging level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(vars(args))
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(config.log_level)
    return run(config)


if __name__ == "__main__":
    sys.exit(main())
