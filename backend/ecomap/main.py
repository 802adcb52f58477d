import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ecomap.api.routes import router
from ecomap.config import get_settings
from ecomap.extraction.vision_extractor import VisionExtractor
from ecomap.ir.errors import ConfigurationMissing, ExtractionFailed, MapValidationError, NotFound
from ecomap.session.controller import MapSession
from ecomap.store.map_store import MapStore

log = logging.getLogger(__name__)


def _error(status_code: int, code: str, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "code": code, "message": str(exc), **extra},
    )


def create_app(
    store: Optional[MapStore] = None,
    extractor: Optional[VisionExtractor] = None,
) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(
        title="Ecosystem Map Engine",
        version="1.0.0",
    )

    # Middleware FIRST
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes AFTER middleware
    app.include_router(router)

    app.state.session = MapSession(store or MapStore(), extractor=extractor)

    @app.on_event("startup")
    async def startup():
        session: MapSession = app.state.session
        await session.store.init(
            retries=settings.db_connect_retries,
            delay=settings.db_connect_delay_seconds,
        )
        await session.start()
        log.info("[Main] %d maps loaded", len(session.list_maps()))

    @app.on_event("shutdown")
    async def shutdown():
        session: MapSession = app.state.session
        await session.close()
        await session.store.close()

    @app.exception_handler(MapValidationError)
    async def validation_failed(request: Request, exc: MapValidationError):
        return _error(422, "validation_failed", exc, issues=[i.to_dict() for i in exc.issues])

    @app.exception_handler(NotFound)
    async def not_found(request: Request, exc: NotFound):
        return _error(404, "not_found", exc)

    @app.exception_handler(ConfigurationMissing)
    async def configuration_missing(request: Request, exc: ConfigurationMissing):
        return _error(503, "configuration_missing", exc)

    @app.exception_handler(ExtractionFailed)
    async def extraction_failed(request: Request, exc: ExtractionFailed):
        return _error(502, "extraction_failed", exc)

    return app


app = create_app()
