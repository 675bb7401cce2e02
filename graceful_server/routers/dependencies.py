from fastapi import Request

from graceful_server.services.server import Server


def get_server(request: Request) -> Server:
    """The Server instance that owns this application"""
    return request.app.state.server
