"""FastAPI application serving the board's durable state."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ..board.engine import BoardEngine
from ..board.model import BoardValidationError
from ..constants import ENV_PROJECT_DIR, STATE_DIR_NAME
from .board_api import create_board_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        project_dir: Default project directory (its ``.kanban/`` holds the board).
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Kanban Board API",
        description="Durable store for projects and ordered tasks",
        version="1.0.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir
    app.state.engines = {}

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return app.state.default_project_dir
        if os.environ.get(ENV_PROJECT_DIR):
            return Path(os.environ[ENV_PROJECT_DIR])
        return Path.cwd()

    def get_engine(project_dir_param: Optional[str] = None) -> BoardEngine:
        state_dir = (_get_project_dir(project_dir_param) / STATE_DIR_NAME).resolve()
        engine = app.state.engines.get(state_dir)
        if engine is None:
            engine = BoardEngine(state_dir)
            app.state.engines[state_dir] = engine
        return engine

    @app.exception_handler(BoardValidationError)
    async def _board_validation_error(request: Request, exc: BoardValidationError) -> JSONResponse:
        logger.info("Rejected {} {}: {}", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=400,
            content={"error": str(exc), "issues": jsonable_encoder(exc.issues)},
        )

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Invalid payload for {} {}", request.method, request.url.path)
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid payload", "issues": jsonable_encoder(exc.errors())},
        )

    @app.get("/")
    async def root():
        return {"name": "Kanban Board API", "version": "1.0.0", "status": "running"}

    app.include_router(create_board_router(get_engine))
    return app
