"""
dreamshell server

FastAPI application exposing the container session lifecycle API.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dreamshell.api import api_router
from dreamshell.config import Settings, get_settings
from dreamshell.core.lifecycle import ContainerLifecycle
from dreamshell.core.runtime import ContainerRuntime, DockerRuntime
from dreamshell.core.session_log import SessionLog, SessionRegistry
from dreamshell.lib.errors import DreamshellError, ValidationFailure
from dreamshell.lib.logger import get_logger, record_error, setup_logging

logger = get_logger(__name__)


def _error_body(message: str) -> dict[str, str]:
    return {"error": message}


async def dreamshell_error_handler(request: Request, exc: DreamshellError) -> JSONResponse:
    if exc.is_server_error:
        record_error(f"{request.method} {request.url.path}", exc.diagnostic())
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info(f"Invalid body for {request.url.path}: {exc.errors()}")
    failure = ValidationFailure()
    return JSONResponse(status_code=failure.status_code, content=_error_body(failure.message))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return JSONResponse(status_code=404, content=_error_body("Not found"))
    return JSONResponse(status_code=exc.status_code, content=_error_body(str(exc.detail)))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
    record_error(f"{request.method} {request.url.path}", f"{type(exc).__name__}: {exc}")
    return JSONResponse(status_code=500, content=_error_body("Internal server error"))


def create_app(
    settings: Optional[Settings] = None,
    runtime: Optional[ContainerRuntime] = None,
) -> FastAPI:
    """Build the application. `runtime` overrides the docker CLI runtime (tests)."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=settings.log_level,
            format_string=settings.log_format,
            error_log_path=settings.error_log_path,
        )

        logger.info("Starting dreamshell server...")
        logger.info(f"Sessions directory: {settings.sessions_path}")
        if not settings.jwt_secret:
            logger.warning("JWT_SECRET is not set: every API request will be rejected")

        session_log = SessionLog(settings.sessions_path)
        restored = session_log.load_all()
        logger.info(f"Restored {restored} session(s) from disk")

        session_runtime = runtime or DockerRuntime(
            docker_binary=settings.docker_binary,
            timeout=settings.runtime_timeout,
        )
        app.state.runtime = session_runtime
        app.state.session_log = session_log
        app.state.registry = SessionRegistry(session_log)
        app.state.lifecycle = ContainerLifecycle(session_runtime, session_log, settings.image)

        logger.info("Server ready")

        yield

        logger.info("Shutting down...")
        app.state.lifecycle = None
        app.state.registry = None
        app.state.session_log = None
        app.state.runtime = None

    app = FastAPI(
        title="dreamshell",
        description="Provision, restart, terminate and delete container sessions with persistent stdio transcripts",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.settings = settings

    app.add_exception_handler(DreamshellError, dreamshell_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list or ["*"],
        allow_credentials=settings.cors_origins_list is not None,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    return app


def main(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Main entry point."""
    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    print(f"""
===============================================================
          dreamshell session server
===============================================================
  Server:    http://{host}:{port}
  Sessions:  {str(settings.sessions_path)[:45]}
---------------------------------------------------------------
  API Endpoints:
    POST /api/start         - Create a session container
    POST /api/restart       - Restart a session container
    POST /api/terminate     - Stop a session, discard its log
    POST /api/delete        - Remove a stopped session
    GET  /api/health        - Health check
    GET  /openapi.json      - Route descriptor
===============================================================
    """)

    if port != settings.port:
        settings = settings.model_copy(update={"port": port})

    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
