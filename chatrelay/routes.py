from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .api.v1.chat_routes import router as chat_router
from .db import engine
from .errors import install_error_handlers
from .logging_config import logger
from .models import Base
from .provider.registry import build_default_registry
from .services.relay_service import wait_for_background_relays
from .settings import settings


class HealthResponse(BaseModel):
    status: str = "ok"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        Base.metadata.create_all(bind=engine)
    logger.info(
        "Loaded %d models across %d providers",
        len(app.state.provider_registry.list_models()),
        len(app.state.provider_registry.list_providers()),
    )
    yield
    # Let running relays write their terminal status before the process exits.
    await wait_for_background_relays(timeout=30)


def create_app() -> FastAPI:
    docs_enabled = settings.enable_api_docs
    app = FastAPI(
        title="Chat Relay",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    # Built once per process; handlers receive it by reference.
    app.state.provider_registry = build_default_registry(settings.openrouter_base_url)

    origins = [o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    install_error_handlers(app)
    app.include_router(chat_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        client_host = request.client.host if request.client else "-"
        logger.info("HTTP %s %s from %s", request.method, request.url.path, client_host)
        response = await call_next(request)
        logger.info(
            "HTTP %s %s -> %s", request.method, request.url.path, response.status_code
        )
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    return app


__all__ = ["create_app"]
