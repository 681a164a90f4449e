"""
Webhook audit log writer.

One webhook_logs row per received notification. Auditing is best-effort: a
failed insert is rolled back and logged, never raised into the webhook.
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy.orm import Session

from shared.config.constants import Limits
from shared.config.logging import get_logger
from shared.infrastructure.db import safe_commit
from webhook_api.models import WebhookLog

logger = get_logger(__name__)


def _truncate(value: Any) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text[: Limits.MAX_AUDIT_RESPONSE_LENGTH]


class WebhookAuditLog:
    def __init__(self, db: Session):
        self._db = db

    def record(
        self,
        webhook_type: str,
        status_code: int,
        payload: Any = None,
        tenant_id: str | None = None,
        response: Any = None,
        error_message: str | None = None,
    ) -> WebhookLog | None:
        """Insert and commit one audit row. Returns None when the insert failed."""
        entry = WebhookLog(
            webhook_type=webhook_type,
            status_code=status_code,
            payload=payload,
            tenant_id=tenant_id,
            response=_truncate(response),
            error_message=_truncate(error_message),
        )
        try:
            self._db.add(entry)
            safe_commit(self._db)
        except Exception as e:
            logger.error(
                "Failed to record webhook audit row",
                webhook_type=webhook_type,
                status_code=status_code,
                error=str(e),
            )
            return None
        return entry
