"""
Mercado Pago webhook signature verification.

Mercado Pago sends:
- x-signature header: "ts=<timestamp>,v1=<hmac>"
- x-request-id header

The HMAC-SHA256 of "id:{data_id};request-id:{x_request_id};ts:{ts};" with
the webhook secret must equal v1.
"""

import hashlib
import hmac

from shared.config.logging import get_logger
from shared.config.settings import settings

logger = get_logger(__name__)


def verify_mercadopago_signature(
    x_signature: str | None,
    x_request_id: str | None,
    data_id: str,
) -> bool:
    if not settings.mercadopago_webhook_secret:
        return True

    if not x_signature or not x_request_id:
        logger.warning("MP webhook missing signature headers")
        return False

    parts = {}
    for part in x_signature.split(","):
        if "=" in part:
            key, value = part.split("=", 1)
            parts[key.strip()] = value.strip()

    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        logger.warning("MP webhook signature malformed")
        return False

    # Mercado Pago lower-cases alphanumeric ids in the manifest
    manifest = f"id:{data_id.lower()};request-id:{x_request_id};ts:{ts};"
    expected = hmac.new(
        settings.mercadopago_webhook_secret.encode(),
        manifest.encode(),
        hashlib.sha256,
    ).hexdigest()

    if not hmac.compare_digest(expected, v1):
        logger.warning("MP webhook signature mismatch", received=v1[:8])
        return False
    return True
