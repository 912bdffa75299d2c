# apps/api/main.py
from __future__ import annotations
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from libs.adapters.errors import NotFound, StoreUnavailable, TransportError
from libs.observability.logging import get_logger, setup_logging
from libs.storage.config import PipelineSettings
from apps.api.deps import build_pipeline
from apps.api.routers import articles, dev, health
from apps.api.services.article_pipeline import ArticlePipeline, PipelineNotReady


def create_app(settings: PipelineSettings | None = None, pipeline: ArticlePipeline | None = None) -> FastAPI:
    """The API submits jobs and serves reads; it never consumes jobs."""
    settings = settings or PipelineSettings()
    setup_logging(settings.LOG_LEVEL)
    log = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        p = pipeline or build_pipeline(settings, shared=True)
        app.state.settings = settings
        app.state.pipeline = p
        p.start()
        await p.wait_ready(timeout=settings.READY_TIMEOUT_SEC)
        p.on_lost(lambda: log.error("api.pipeline_lost"))
        try:
            yield
        finally:
            await p.shutdown()

    app = FastAPI(title="article-pipeline API", lifespan=lifespan)

    @app.exception_handler(NotFound)
    async def _not_found(_: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PipelineNotReady)
    async def _not_ready(_: Request, exc: PipelineNotReady):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(TransportError)
    async def _transport(_: Request, exc: TransportError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(StoreUnavailable)
    async def _store_down(_: Request, exc: StoreUnavailable):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/", response_class=HTMLResponse)
    def root():
        return """
        <html><body>
          <h1>Article Pipeline API</h1>
          <p>See <a href="/docs">/docs</a> for Swagger UI.</p>
        </body></html>
        """

    app.include_router(health.router)
    app.include_router(articles.router)
    app.include_router(dev.router)
    return app
