import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from auth import router as auth_router
from candidates import router as candidates_router
from certificates import router as certificates_router
from cohorts import router as cohorts_router
from core import config, db
from core.errors import DomainError
from core.log import configure_logging
from core.responses import fail, ok
from courses import router as courses_router
from dashboards import router as dashboards_router
from notifications import router as notifications_router
from placements import router as placements_router
from vetting import router as vetting_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # One pool per process, owned by the app.
    database = db.Database.from_env()
    await database.connect()
    app.state.database = database
    logger.info("database_connected pool_max=%s", database.max_size)
    try:
        yield
    finally:
        await database.close()


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        message = error.get("msg", "Invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request."


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(_: Request, exc: DomainError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=fail(exc.message))

    @app.exception_handler(HTTPException)
    async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content=fail(_validation_message(exc)))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error method=%s path=%s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=fail("Internal server error"))


def create_app() -> FastAPI:
    app = FastAPI(lifespan=lifespan)

    # Allow the frontend dev server to call this API from the browser.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    app.include_router(auth_router.router, tags=["auth"])
    app.include_router(candidates_router.router, tags=["candidates"])
    app.include_router(courses_router.router, tags=["courses"])
    app.include_router(cohorts_router.router, tags=["cohorts"])
    app.include_router(vetting_router.router, tags=["vetting"])
    app.include_router(certificates_router.router, tags=["certificates"])
    app.include_router(placements_router.router, tags=["placements"])
    app.include_router(dashboards_router.router, tags=["dashboards"])
    app.include_router(notifications_router.router, tags=["notifications"])

    @app.get("/health")
    def health() -> dict:
        return ok({"status": "ok"})

    return app


app = create_app()
