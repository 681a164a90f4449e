"""
Application wiring: lifespan, CORS, middlewares.
"""

from webhook_api.core.cors import configure_cors
from webhook_api.core.lifespan import lifespan
from webhook_api.core.middlewares import register_middlewares

__all__ = ["configure_cors", "lifespan", "register_middlewares"]
