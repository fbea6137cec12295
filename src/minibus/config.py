from __future__ import annotations

import os
from typing import Any, cast

from aws_lambda_powertools import Logger
from aws_lambda_powertools.utilities import parameters

logger = Logger()

TABLE_NAME = os.environ.get("TABLE_NAME", "minibus")
RESOURCE_ID = os.environ.get("RESOURCE_ID", "minibus")
EVENT_BUS_NAME = os.environ.get("EVENT_BUS_NAME", "default")
NOTIFICATION_SERVICE_URL = os.environ.get("NOTIFICATION_SERVICE_URL", "")
CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "http://localhost:5173")

DEFAULT_COUNTRY_CODE = os.environ.get("DEFAULT_COUNTRY_CODE", "40")
DISPLAY_TIMEZONE = os.environ.get("DISPLAY_TIMEZONE", "Europe/Bucharest")

PIN_WINDOW_SECONDS = int(os.environ.get("PIN_WINDOW_SECONDS", "300"))
PIN_MAX_ATTEMPTS = int(os.environ.get("PIN_MAX_ATTEMPTS", "5"))
TOKEN_TTL_HOURS = int(os.environ.get("TOKEN_TTL_HOURS", "24"))

SIGNING_SECRET_NAME = os.environ.get("SIGNING_SECRET_NAME", "minibus/jwt-secret")

# Loaded on first use, kept for the lifetime of the execution environment
_signing_secret: str | None = None


def _load_signing_secret(force_fetch: bool = False) -> str:
    from_env = os.environ.get("SIGNING_SECRET")
    if from_env:
        return from_env
    value = cast(
        dict[str, Any],
        parameters.get_secret(SIGNING_SECRET_NAME, transform="json", force_fetch=force_fetch),
    )
    return str(value["secret"])


def get_signing_secret() -> str:
    global _signing_secret
    if _signing_secret is None:
        _signing_secret = _load_signing_secret()
        logger.info("Signing secret loaded", extra={"secret_name": SIGNING_SECRET_NAME})
    return _signing_secret


def reload_signing_secret() -> str:
    """Re-fetch the signing secret after a rotation."""
    global _signing_secret
    _signing_secret = _load_signing_secret(force_fetch=True)
    logger.info("Signing secret reloaded", extra={"secret_name": SIGNING_SECRET_NAME})
    return _signing_secret
