from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import auth, chat, conversations, health, market, transactions
from .config import settings
from .core.errors import InvalidArguments, NotFound, SionError, Unauthorized
from .dependencies import AppServices, build_services
from .logging_config import setup_logging
from .middleware import RequestLoggingMiddleware

ERROR_STATUS = {
    Unauthorized: 401,
    NotFound: 404,
    InvalidArguments: 422,
}


async def sion_error_handler(request: Request, exc: SionError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        400,
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.to_payload()})


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is None:
            setup_logging()
        app.state.services = services or build_services(settings)
        await app.state.services.startup()
        try:
            yield
        finally:
            await app.state.services.shutdown()

    app = FastAPI(
        title="Sion Agent API",
        description="Streaming Solana tool orchestration with a transaction safety pipeline",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(SionError, sion_error_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(auth.router)
    app.include_router(chat.router, tags=["Chat"])
    app.include_router(conversations.router, tags=["Conversations"])
    app.include_router(transactions.router, tags=["Transactions"])
    app.include_router(market.router, tags=["Market"])

    @app.get("/")
    async def root():
        """Root endpoint with basic info"""
        return {
            "name": "Sion Agent API",
            "version": __version__,
            "docs": "/docs",
            "health": "/healthz",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "sion.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
