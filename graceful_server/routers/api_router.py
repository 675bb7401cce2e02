from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from typing import Optional
import logging

from graceful_server.schemas.response_schemas import message
from graceful_server.utils.responder import respond

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["API"])


@router.get("/get", response_class=PlainTextResponse)
def get_greeting(name: Optional[str] = None):
    """Greet the caller by the ``name`` query parameter, or as Guest"""
    if not name:
        name = "Guest"
    logger.info(f"Received request for {name}")
    return PlainTextResponse(f"Hello, {name}\n")


@router.post("/post")
def post_message():
    resp = message(True, "Success")
    resp.data = "POST"
    return respond(resp)
