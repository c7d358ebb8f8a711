# allylab_notify/main.py
"""
AllyLab notification service - main application.

Exposes webhook destination management over HTTP. Scan pipelines call
Dispatcher.trigger() in-process to fan events out.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import webhooks_router
from .api.deps import get_dispatcher
from .logging import get_logger
from .settings import settings

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start-up / shutdown hooks; shuts the delivery pool down on exit."""
    logger.info("service_starting", host=settings.api_host, port=settings.api_port)
    yield
    logger.info("service_stopping")
    if get_dispatcher.cache_info().currsize:
        get_dispatcher().close(wait=False)
        get_dispatcher.cache_clear()


app = FastAPI(
    title="AllyLab Notifications",
    description="""
    Webhook notifications for accessibility scan events.

    Delivers scan.completed, scan.failed, score.dropped and critical.found
    events to generic HTTP receivers, Slack and Microsoft Teams, with
    HMAC-signed payloads and retries with exponential backoff.
    """,
    version="0.1.0",
    lifespan=lifespan,
)

allowed_origins = settings.allowed_origins.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(webhooks_router)


@app.get("/health")
async def health_check():
    """Basic health check."""
    return {"status": "ok", "service": "allylab-notify"}


def run():
    """Run the server (entry point for CLI)."""
    import uvicorn
    uvicorn.run(
        "allylab_notify.main:app",
        host=settings.api_host,
        port=settings.api_port,
    )


if __name__ == "__main__":
    run()
