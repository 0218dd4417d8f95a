"""
Telemetry Module
================

Observability for funnelboard. Standard `logging` everywhere plus Sentry
for error tracking (`sentry.py`).

Usage:
    from funnelboard.telemetry import init_sentry, capture_exception
"""

from .sentry import capture_exception, init_sentry, set_user_context

__all__ = [
    "init_sentry",
    "set_user_context",
    "capture_exception",
]
