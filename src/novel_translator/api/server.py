"""FastAPI application factory."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from novel_translator import __version__
from novel_translator.api import websocket
from novel_translator.api.routes import glossary, jobs, projects
from novel_translator.config import AppConfig, get_config
from novel_translator.pipeline.batch import InvalidTransitionError
from novel_translator.pipeline.guard import RunInProgressError
from novel_translator.services.events import EventBus
from novel_translator.services.glossary_service import GlossaryService
from novel_translator.services.pipeline_service import Capabilities, PipelineService
from novel_translator.services.project_service import ProjectService
from novel_translator.storage import JsonLibraryStore, RecordNotFoundError


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Stop live batches so their guards and tasks are released
    await app.state.pipeline_service.shutdown()


def create_app(
    data_dir: Optional[Path] = None,
    capabilities_factory: Optional[Callable[[], Capabilities]] = None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or get_config()
    app = FastAPI(
        title="Novel Translator API",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = JsonLibraryStore(data_dir or config.data_dir)
    event_bus = EventBus()
    glossary_service = GlossaryService(store)
    pipeline_service = PipelineService(
        store, event_bus, capabilities_factory=capabilities_factory, config=config
    )
    project_service = ProjectService(store, translator_factory=lambda: pipeline_service.translator)

    projects.set_project_service(project_service)
    app.include_router(projects.router)

    glossary.set_glossary_service(glossary_service)
    app.include_router(glossary.router)

    jobs.set_pipeline_service(pipeline_service)
    app.include_router(jobs.router)

    # Store on app.state for WebSocket access
    app.state.event_bus = event_bus
    app.state.pipeline_service = pipeline_service

    app.include_router(websocket.router)

    @app.exception_handler(RecordNotFoundError)
    async def not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(RunInProgressError)
    async def run_in_progress(request: Request, exc: RunInProgressError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def bad_request(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/api/v1/health")
    async def health() -> dict:
        return {"status": "ok", "version": __version__}

    return app
