"""
HTTP routers.

- webhooks: provider payment notifications
- health: liveness and dependency checks
"""

from webhook_api.routers.health import router as health_router
from webhook_api.routers.webhooks import router as webhooks_router

__all__ = ["health_router", "webhooks_router"]
