"""
Webhook API main application.
Entry point for the FastAPI server receiving payment provider notifications.
"""

from fastapi import FastAPI

from shared.config.settings import settings
from webhook_api.core import configure_cors, lifespan, register_middlewares
from webhook_api.routers import health_router, webhooks_router


app = FastAPI(
    title="OrderZap Payments API",
    description="Payment provider webhooks and order payment reconciliation",
    version="0.1.0",
    lifespan=lifespan,
)

configure_cors(app)
register_middlewares(app)

app.include_router(health_router)
app.include_router(webhooks_router)


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "webhook_api.main:app",
        host="0.0.0.0",
        port=settings.webhook_api_port,
        reload=settings.debug,
    )
