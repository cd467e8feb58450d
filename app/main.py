import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging import configure_logging
from app.api.chat import router as chat_router
from app.api.diagnostics import router as diagnostics_router
from app.dependencies import build_runtime


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings)
    # Fail fast: never start serving without credentials.
    settings.require_credentials()

    runtime = build_runtime(settings)
    app.state.runtime = runtime
    logger.info(f"{settings.service_name} started (environment={settings.environment})")
    try:
        yield
    finally:
        await runtime.close()
        logger.info(f"{settings.service_name} stopped")


app = FastAPI(
    title=settings.service_name,
    lifespan=lifespan
)

# CORS middleware - allow the chat UI to call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router, prefix="/api")
app.include_router(diagnostics_router, prefix="/api")

@app.get("/health")
async def health():
    return {"status": "ok"}
