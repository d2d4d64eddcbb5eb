"""
Mapping of service errors to HTTP responses.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from structlog import get_logger

from groupkeeper.core.errors import (
    Conflict,
    NotFound,
    StorageError,
    SyncError,
    TransferIncomplete,
    UpstreamError,
)

# Most specific first; handlers are looked up along the exception's MRO.
ERROR_RESPONSES: dict[type[Exception], tuple[int, str]] = {
    TransferIncomplete: (500, "transfer_incomplete"),
    SyncError: (502, "sync_failed"),
    UpstreamError: (502, "upstream_unavailable"),
    NotFound: (404, "not_found"),
    Conflict: (409, "conflict"),
    StorageError: (500, "storage_failed"),
}


def error_handler(status_code: int, category: str):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        message = str(exc)

        if isinstance(exc, SyncError) and not isinstance(exc, TransferIncomplete):
            message = f"The change was committed locally but not synced: {message}"

        await get_logger().ainfo(
            "api.error", category=category, path=request.url.path, error=str(exc)
        )

        return JSONResponse(
            status_code=status_code, content={"error": category, "message": message}
        )

    return handler


def add_exception_handlers(app: FastAPI) -> FastAPI:
    for exc, (status_code, category) in ERROR_RESPONSES.items():
        app.add_exception_handler(exc, error_handler(status_code, category))

    return app
