"""FastAPI application for document approval tracking."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from approval_tracker.config import get_settings
from approval_tracker.database import dispose_engine, init_db, init_engine
from approval_tracker.errors import ServiceError
from approval_tracker.logging_config import setup_logging
from approval_tracker.routes import router

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_format)
    init_engine(settings.database_url, echo=settings.database_echo)
    init_db()
    logger.info("%s started", settings.app_name)
    yield
    dispose_engine()


app = FastAPI(
    title=settings.app_name,
    description="Document approval rounds across a project lifecycle",
    version="0.1.0",
    debug=settings.debug,
    lifespan=lifespan,
)


def _error_response(error: ServiceError) -> JSONResponse:
    payload = {
        "error": {
            "code": error.code,
            "message": error.message,
            "meta": error.meta or None,
        }
    }
    return JSONResponse(status_code=error.status_code, content=payload)


@app.exception_handler(ServiceError)
def service_error_handler(_: Request, exc: ServiceError):
    return _error_response(exc)


app.include_router(router, prefix=settings.api_prefix)


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
