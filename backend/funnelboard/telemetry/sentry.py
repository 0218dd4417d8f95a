"""
Sentry Error Tracking
=====================

Error tracking for the API, initialised from settings on startup.

Related files:
- funnelboard/main.py: Initializes Sentry on app startup
- funnelboard/routers/*.py: unexpected errors captured before returning a 500

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: Environment name (production, staging, development)
"""

import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from ..config import get_settings

logger = logging.getLogger(__name__)

_initialized = False


def init_sentry() -> bool:
    """
    Initialize Sentry SDK for FastAPI.

    Returns:
        True if Sentry was initialized, False when no DSN is configured.
    """
    global _initialized

    settings = get_settings()
    if not settings.SENTRY_DSN:
        logger.info("[SENTRY] SENTRY_DSN not set - error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.INFO,         # breadcrumbs
                event_level=logging.ERROR,  # events
            ),
        ],
        traces_sample_rate=0.1,
        # Lead payloads carry contact data
        send_default_pii=False,
    )
    _initialized = True
    logger.info(f"[SENTRY] Initialized for {settings.ENVIRONMENT} environment")
    return True


def set_user_context(user_id: str, email: Optional[str] = None) -> None:
    """Attach the authenticated user to subsequent events of this request."""
    if _initialized:
        sentry_sdk.set_user({"id": user_id, "email": email})


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Report a handled exception.

    Example:
        try:
            rows = await fetcher.fetch_rows(url)
        except Exception as e:
            capture_exception(e, extra={"url": url})
            raise HTTPException(status_code=500, detail="Failed to read spreadsheet")
    """
    if not _initialized:
        logger.error(f"[SENTRY] Exception (Sentry disabled): {exception!r}")
        return

    with sentry_sdk.new_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
