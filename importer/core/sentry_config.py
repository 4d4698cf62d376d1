"""
Sentry error reporting for importer runs.

Disabled unless a DSN is configured. Failed items are reported even though
the batch keeps going; events carry the ImporterError class and the item
being processed so they group by failure kind and can be traced back to a
listing.
"""

import logging

import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from importer.config import AppEnv
from importer.core.exceptions import CircuitBreakerOpenError, ImporterError
from importer.core.logging_config import current_item_id

# A breaker rejection repeats a failure that was already reported.
DROPPED_ERRORS = (CircuitBreakerOpenError,)

# Error detail keys promoted to searchable tags.
TAGGED_DETAILS = ("status", "path")


def init_sentry(
    dsn: str,
    app_env: AppEnv,
    app_version: str,
    traces_sample_rate: float = 0.0,
) -> None:
    if not dsn:
        return

    sentry_sdk.init(
        dsn=dsn,
        environment=app_env.value,
        release=f"axent-importer@{app_version}",
        traces_sample_rate=traces_sample_rate,
        integrations=[
            AsyncioIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=_filter_events,
        send_default_pii=False,
    )


def _filter_events(event: dict, hint: dict) -> dict | None:
    """Drop repeat failures; tag the rest with error type and item id."""
    exc_value = hint["exc_info"][1] if "exc_info" in hint else None

    if isinstance(exc_value, DROPPED_ERRORS):
        return None

    item_id = current_item_id()
    if item_id:
        event.setdefault("tags", {})["item_id"] = item_id

    if isinstance(exc_value, ImporterError):
        tags = event.setdefault("tags", {})
        tags["error_type"] = type(exc_value).__name__
        for key in TAGGED_DETAILS:
            if key in exc_value.details:
                tags[key] = str(exc_value.details[key])
        if exc_value.details:
            event["extra"] = {**event.get("extra", {}), **exc_value.details}

    return event
