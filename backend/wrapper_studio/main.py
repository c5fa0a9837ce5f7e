from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wrapper_studio.config import Settings, get_settings
from wrapper_studio.llm import ModelAdapter, build_adapter
from wrapper_studio.routes import router
from wrapper_studio.storage import Storage, StorageError, build_storage
from wrapper_studio.users import ensure_demo_user

logger = logging.getLogger("wrapper-studio")


def _error_paths(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "path": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    adapter: Optional[ModelAdapter] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        user = await ensure_demo_user(app.state.storage, seed_wrapper=settings.seed_demo_data)
        app.state.demo_user_id = user.id
        logger.info(
            "🚀 Server started — provider=%s storage=%s demo user=%s",
            settings.llm_provider,
            settings.storage_backend,
            user.id,
        )
        yield
        logger.info("👋 Server shutting down")

    app = FastAPI(
        title="Wrapper Studio Backend",
        description=(
            "Configurable wrappers around hosted LLMs: prompts, integrations "
            "and persisted chat transcripts."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage = storage or build_storage(settings)
    app.state.adapter = adapter or build_adapter(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": _error_paths(exc)})

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Internal storage error"})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("%s %s failed", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
