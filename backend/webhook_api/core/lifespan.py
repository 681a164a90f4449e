"""
Startup and shutdown of the webhook API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from shared.config.logging import setup_logging, webhook_api_logger as logger
from shared.config.settings import settings
from shared.infrastructure.db import engine
from webhook_api.models import Base


def _check_configuration() -> None:
    """Refuse to start in production with an unsafe configuration; warn elsewhere."""
    problems = settings.validate_production_secrets()
    for problem in problems:
        logger.error("Configuration problem", problem=problem)
    if problems and settings.environment == "production":
        raise RuntimeError("Unsafe production configuration: " + "; ".join(problems))

    if not settings.mercadopago_webhook_secret:
        logger.warning("MERCADOPAGO_WEBHOOK_SECRET not set, webhook signatures are not verified")
    if not settings.mercadopago_access_token:
        logger.warning("MERCADOPAGO_ACCESS_TOKEN not set, subscription webhooks will answer 500")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    _check_configuration()

    # Tables are owned by the order-taking application; create_all only
    # fills in what a fresh (local or test) database is missing.
    Base.metadata.create_all(bind=engine)
    logger.info("Webhook API started", port=settings.webhook_api_port, env=settings.environment)

    yield

    engine.dispose()
    logger.info("Webhook API stopped")
