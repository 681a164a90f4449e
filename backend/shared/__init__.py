"""
Shared module for code used by the webhook API and the CLI.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (Pydantic)
  - logging.py: Structured logging, phone/token masking
  - constants.py: Providers, approved statuses, subscription plans, limits

- shared.infrastructure: Database and request correlation
  - db.py: SQLAlchemy sessions, safe_commit()
  - correlation.py: X-Request-ID middleware and log filter

- shared.utils: Utilities
  - health.py: Health check timeout decorator and aggregation

IMPORT EXAMPLES:
    from shared.infrastructure.db import get_db, safe_commit
    from shared.config.settings import settings
    from shared.config.constants import Providers, SubscriptionPlans
    from shared.config.logging import get_logger
"""
