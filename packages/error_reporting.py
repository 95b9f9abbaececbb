import logging
import os

from .request_context import current_context

try:  # Optional dependency
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration
except ImportError:  # pragma: no cover - optional
    sentry_sdk = None
    FastApiIntegration = None
    LoggingIntegration = None
    StarletteIntegration = None


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def tag_event(event: dict, hint=None) -> dict:
    """Attach request/job/user ids so an event can be matched to log lines."""
    context = current_context()
    if context:
        tags = event.setdefault("tags", {})
        for key, value in context.items():
            tags.setdefault(key, value)
    return event


def init_error_reporting(service_name: str, enable_fastapi: bool = False) -> bool:
    """Wire Sentry for a service; returns False when no DSN is configured."""
    dsn = os.getenv("TRAINING_SENTRY_DSN")
    if not dsn or sentry_sdk is None:
        return False

    integrations = []
    if LoggingIntegration is not None:
        # Range write failures log at ERROR and become events.
        integrations.append(LoggingIntegration(level=logging.INFO, event_level=logging.ERROR))
    if enable_fastapi and FastApiIntegration is not None and StarletteIntegration is not None:
        integrations.extend([FastApiIntegration(), StarletteIntegration()])

    sentry_sdk.init(
        dsn=dsn,
        environment=os.getenv("TRAINING_ENV", os.getenv("RUN_MODE", "prod")),
        release=os.getenv("TRAINING_RELEASE"),
        traces_sample_rate=_float_env("TRAINING_SENTRY_TRACES_SAMPLE_RATE", 0.0),
        integrations=integrations,
        before_send=tag_event,
        send_default_pii=False,
    )
    sentry_sdk.set_tag("service", service_name)
    return True
