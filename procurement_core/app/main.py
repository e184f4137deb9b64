import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db import create_db_and_tables
from .logging_config import setup_logging
from .routers.history import router as history_router
from .routers.line_items import router as line_items_router
from .routers.procurement import router as procurement_router
from .services.errors import ProcurementError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProcurementError)
    async def procurement_error_handler(request: Request, exc: ProcurementError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "code": exc.code, "message": exc.message},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "code": "INTERNAL_ERROR", "message": "An internal error occurred"},
        )


def create_app(init_db: bool = True) -> FastAPI:
    setup_logging()
    settings = get_settings()

    app = FastAPI(
        title="Procurement Management Core",
        description="Procurement request lifecycle with factory-scoped access control",
        version="1.0.0"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(procurement_router)
    app.include_router(line_items_router)
    app.include_router(history_router)
    register_exception_handlers(app)

    if init_db:
        @app.on_event("startup")
        def on_startup():
            logger.info("Creating database tables at startup...")
            create_db_and_tables()
            logger.info("Database ready.")

    return app


app = create_app()
