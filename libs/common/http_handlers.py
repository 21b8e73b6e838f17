from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from libs.common.errors import (
    INTERNAL_ERROR,
    JSONRPC_VERSION,
    DomainError,
    McpError,
    NotFoundError,
)
from libs.common.logging import get_logger


def register_exception_handlers(app: FastAPI, logger_name: str) -> None:
    logger = get_logger(logger_name)

    @app.exception_handler(McpError)
    async def handle_mcp_error(request: Request, exc: McpError) -> JSONResponse:
        logger.warning(
            "mcp_error",
            path=request.url.path,
            method=request.method,
            code=exc.code,
            message=exc.message,
        )
        return JSONResponse(
            status_code=400,
            content={"jsonrpc": JSONRPC_VERSION, "error": exc.to_envelope().to_dict(), "id": None},
        )

    @app.exception_handler(DomainError)
    async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
        logger.warning(
            "domain_error",
            path=request.url.path,
            method=request.method,
            error_code=exc.error_code,
            message=exc.message,
        )
        return JSONResponse(
            status_code=404 if isinstance(exc, NotFoundError) else 400,
            content={"error_code": exc.error_code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "unhandled_error",
            path=request.url.path,
            method=request.method,
            error=str(exc),
        )
        return JSONResponse(
            status_code=500,
            content={
                "jsonrpc": JSONRPC_VERSION,
                "error": {"code": INTERNAL_ERROR, "message": "Internal server error"},
                "id": None,
            },
        )
