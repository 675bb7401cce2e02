from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from graceful_server.routers.dependencies import get_server
from graceful_server.services.server import Server

router = APIRouter(tags=["Shutdown"])

SHUTDOWN_BODY = "Shutdown server"
SHUTDOWN_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


@router.api_route("/shutdown", methods=SHUTDOWN_METHODS, response_class=PlainTextResponse)
def shutdown(request: Request, server: Server = Depends(get_server)):
    """
    Ask the server to shut down gracefully.

    Always answers 200; only the first call in the process lifetime starts
    the shutdown, later ones are no-ops.
    """
    server.trigger.fire(request.url.path)
    return PlainTextResponse(SHUTDOWN_BODY)
