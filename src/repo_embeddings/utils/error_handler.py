"""
Decorator-based error handling for HTTP entry points.

Unexpected exceptions become a generic 500 response; the detail goes to the
log, never to the client. HTTPException is left for FastAPI to render.
"""

import functools
import logging
from typing import Any, Callable

from fastapi import HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

INTERNAL_ERROR_BODY = {"error": "Internal server error"}


def internal_error_response() -> JSONResponse:
    return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)


def handle_api_errors(func: Callable) -> Callable:
    """
    Wrap an async route handler so unhandled exceptions produce a generic 500.

    Example:
        @app.get("/api/projects")
        @handle_api_errors
        async def list_projects():
            ...
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except Exception:
            logger.error(f"Unhandled error in {func.__name__}", exc_info=True)
            return internal_error_response()

    return wrapper
