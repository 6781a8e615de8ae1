"""
App-level hooks: request timing and the ``UnauthorizedError`` handler.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from utils.errors import UnauthorizedError

logger = logging.getLogger(__name__)


async def unauthorized_handler(request: Request, exc: UnauthorizedError) -> JSONResponse:
    """401 body shared by every route that needs a signed-in account."""
    logger.info("Rejected unauthenticated %s %s", request.method, request.url.path)
    return JSONResponse(status_code=401, content={"success": False, "error": exc.detail})


def register_middleware(app: FastAPI) -> None:
    app.add_exception_handler(UnauthorizedError, unauthorized_handler)

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        # Never log the query string: /auth/callback carries the authorization code.
        logger.debug(
            "%s %s -> %d in %.3fs (redirect=%s)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
            response.headers.get("location", "-").split("?", 1)[0],
        )
        return response
