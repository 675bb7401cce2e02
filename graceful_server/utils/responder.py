from fastapi.responses import JSONResponse

from graceful_server.schemas.response_schemas import ApiResponse


def respond(payload: ApiResponse, status_code: int = 200) -> JSONResponse:
    """
    Serialize a response envelope as the JSON body of the reply.

    Fields left unset (``data`` on a bare message) are omitted. Failures while
    writing the body to the client are the server's concern and are not retried.
    """
    return JSONResponse(
        content=payload.model_dump(exclude_none=True),
        status_code=status_code,
        media_type="application/json",
    )
