import asyncio
import logging

from fastapi.responses import PlainTextResponse

logger = logging.getLogger(__name__)


class InFlightMiddleware:
    """Counts HTTP requests currently being handled so shutdown can wait for them"""

    def __init__(self, app, tracker):
        self.app = app
        self.tracker = tracker

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        self.tracker.enter()
        try:
            await self.app(scope, receive, send)
        finally:
            self.tracker.leave()


class WriteTimeoutMiddleware:
    """
    Bounds the time a request may take to produce its response.

    A request still running after ``timeout`` seconds is cancelled. If no
    response has been started yet the client gets a 503, otherwise the
    connection is left for the server to close.
    """

    def __init__(self, app, timeout: float):
        self.app = app
        self.timeout = timeout

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, send_wrapper), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Request to {scope['path']} exceeded write timeout of {self.timeout}s")
            if not response_started:
                response = PlainTextResponse("Service Unavailable", status_code=503)
                await response(scope, receive, send)
