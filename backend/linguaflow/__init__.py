import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from linguaflow.config import settings
from linguaflow.db import init_all_databases
from linguaflow.db.sqlite import StoreUnavailableError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_all_databases(settings.data_dir)
    logger.info("Review store ready at %s", settings.data_dir / settings.sqlite_filename)
    yield


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error("Review store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Review store unavailable"})


def create_app() -> FastAPI:
    application = FastAPI(
        title="LinguaFlow Review Scheduler", version="0.1.0", lifespan=lifespan
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_exception_handler(StoreUnavailableError, store_unavailable_handler)

    from linguaflow.routers import health, reviews

    application.include_router(health.router)
    application.include_router(
        reviews.router, prefix="/reviews", tags=["reviews"]
    )

    return application


app = create_app()
