"""
HTTP middlewares: security headers, webhook CORS, correlation ids.
"""

from fastapi import FastAPI, Request
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware

from shared.config.settings import settings
from shared.infrastructure.correlation import CorrelationIdMiddleware
from webhook_api.core.cors import WEBHOOK_CORS_HEADERS

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}
HSTS_HEADER = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Static security headers on every response; HSTS in production only."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = HSTS_HEADER
        return response


class WebhookCorsMiddleware(BaseHTTPMiddleware):
    """
    Open CORS for webhook routes.

    OPTIONS pre-flights are answered here with 200, before the origin
    allow-list of CORSMiddleware can reject them. Every other /webhooks
    response (405, 4xx and 5xx included) gets the same headers.
    """

    PATH_PREFIX = "/webhooks"

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.PATH_PREFIX):
            return await call_next(request)

        if request.method == "OPTIONS":
            return Response(status_code=200, headers=WEBHOOK_CORS_HEADERS)

        response = await call_next(request)
        response.headers.update(WEBHOOK_CORS_HEADERS)
        return response


def register_middlewares(app: FastAPI) -> None:
    """
    Starlette runs middlewares in reverse order of registration, so requests
    pass WebhookCors first, then correlation ids, then security headers.
    """
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(WebhookCorsMiddleware)
