# coding: utf-8
"""
Sentry configuration for error monitoring and tracking
"""
import sentry_sdk
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from loguru import logger

from config.config import SENTRY_DSN, ENVIRONMENT


# Keys that must never leave the process
SENSITIVE_HEADERS = ("Authorization", "X-API-Key")
SENSITIVE_EXTRAS = ("private_key", "NEAR_PRIVATE_KEY", "signature")


def init_sentry() -> None:
    """
    Initialize Sentry SDK for error monitoring

    Security verification failures arrive here through the loguru
    sentry sink at "fatal" level and are tagged for alerting.
    """
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                AsyncioIntegration(),
                SqlalchemyIntegration(),
                AioHttpIntegration(),
            ],
            traces_sample_rate=0.1 if ENVIRONMENT == "production" else 1.0,
            sample_rate=1.0,
            attach_stacktrace=True,
            send_default_pii=False,
            max_breadcrumbs=50,
            before_send=before_send_hook,
        )

        logger.info(f"Sentry initialized successfully (Environment: {ENVIRONMENT})")

    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def before_send_hook(event, hint):
    """
    Strip credentials from events and tag billing security incidents
    """
    if 'exc_info' in hint:
        exc_type, exc_value, tb = hint['exc_info']

        if isinstance(exc_value, KeyboardInterrupt):
            return None

        # Imported lazily: config must not depend on the application package
        from license_api.core.exceptions import SecurityVerificationError

        if isinstance(exc_value, SecurityVerificationError):
            event.setdefault('tags', {})['billing.security'] = 'asset_substitution'

    if event.get('request'):
        headers = event['request'].get('headers', {})
        for header in SENSITIVE_HEADERS:
            if header in headers:
                headers[header] = '[Filtered]'

    extra = event.get('extra') or {}
    for key in SENSITIVE_EXTRAS:
        if key in extra:
            extra[key] = '[Filtered]'

    return event


def set_account_context(account_id: str):
    """
    Attach the subscription owner to subsequent Sentry events

    Args:
        account_id: NEAR account (or wallet) id of the subscriber
    """
    sentry_sdk.set_user({"id": account_id})
