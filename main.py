import time

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from deflix.core.config import settings
from deflix.core.container import build_container
from deflix.core.errors import DeflixError
from deflix.core.logging import redact_path, setup_logging
from deflix.api.stremio import deflix_error_handler, router as stremio_router


def create_app(container=None) -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
    )

    # Stremio doesn't show stream responses when no CORS middleware is used!
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.monotonic()
        response = await call_next(request)
        # Never log the raw path, it contains the user's API token
        logger.info(
            f"{request.method} {redact_path(request.url.path)} -> {response.status_code} "
            f"({(time.monotonic() - started) * 1000:.0f}ms)"
        )
        return response

    app.add_exception_handler(DeflixError, deflix_error_handler)
    app.include_router(stremio_router)

    @app.on_event("startup")
    async def startup_event():
        setup_logging(settings.LOG_LEVEL)
        logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION}")
        if container is None:
            app.state.container = build_container(settings)
        else:
            app.state.container = container
        app.state.container.persistence.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down, persisting caches one last time...")
        await app.state.container.persistence.shutdown()
        await app.state.container.aclose()

    return app


app = create_app()


if __name__ == "__main__":
    # uvicorn's access log would print the API token in the path, see log_requests
    uvicorn.run(app, host=settings.BIND_ADDR, port=settings.PORT, access_log=False, timeout_graceful_shutdown=9)
