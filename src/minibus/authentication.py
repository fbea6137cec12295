"""Phone + PIN sign-in.

``request_pin`` sends the PIN of the current time bucket; ``validate_pin``
accepts the PIN of the current or the previous bucket and hands out a
session token. Nothing about a pending sign-in is stored apart from the
failed-attempt counter.
"""

from __future__ import annotations

from typing import Literal

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.parameters.exceptions import GetParameterError
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import BackgroundTasks

from . import access_log, config, notifier, pin, tokens, users
from .errors import InvalidOrExpiredPin, UserNotFound, ValidationError
from .models import LoginResult
from .phone import mask_phone, normalize_phone

logger = Logger()
tracer = Tracer()

# Failures while loading users or the secret must not tell the caller
# anything beyond "unknown phone"
_DEPENDENCY_ERRORS = (ClientError, BotoCoreError, GetParameterError)


@tracer.capture_method
def request_pin(
    phone: str,
    background: BackgroundTasks,
    channel: Literal["sms", "email"] = "sms",
) -> None:
    normalized = normalize_phone(phone)
    if not normalized:
        raise ValidationError("Phone number is required")

    try:
        user = users.find_by_phone(normalized)
        if channel == "email" and not user.email:
            raise ValidationError("User has no email address")
        code = pin.derive_pin(user.phone, pin.current_bucket(), config.get_signing_secret())
    except (UserNotFound, ValidationError):
        raise
    except _DEPENDENCY_ERRORS:
        logger.exception("PIN request failed", extra={"phone": mask_phone(normalized), "channel": channel})
        return

    if channel == "email" and user.email:
        background.add_task(
            notifier.send_email,
            [user.email],
            f"{code} - your minibus PIN",
            f"Hello {user.name}! Your minibus PIN is {code}. It is valid for {config.PIN_WINDOW_SECONDS // 60} minutes.",
        )
    else:
        background.add_task(notifier.send_sms, user.phone, notifier.pin_message(code))
    logger.info("PIN issued", extra={"phone": mask_phone(user.phone), "channel": channel})


def check_email(phone: str) -> bool:
    return bool(users.find_by_phone(phone).email)


@tracer.capture_method
def validate_pin(
    phone: str,
    submitted: str,
    background: BackgroundTasks,
    ip: str | None = None,
    user_agent: str | None = None,
) -> LoginResult:
    normalized = normalize_phone(phone)
    try:
        user = users.find_by_phone(normalized)
        if pin.attempts_exhausted(user.phone):
            logger.warning("PIN rejected, too many attempts", extra={"phone": mask_phone(user.phone)})
            raise InvalidOrExpiredPin()
        secret = config.get_signing_secret()
        if not pin.pin_matches(user.phone, submitted.strip(), secret):
            pin.record_failed_attempt(user.phone)
            logger.info("PIN rejected", extra={"phone": mask_phone(user.phone)})
            raise InvalidOrExpiredPin()
    except InvalidOrExpiredPin:
        raise
    except UserNotFound as exc:
        raise InvalidOrExpiredPin() from exc
    except _DEPENDENCY_ERRORS as exc:
        logger.exception("PIN validation failed", extra={"phone": mask_phone(normalized)})
        raise InvalidOrExpiredPin() from exc

    token = tokens.issue_token(user, secret)
    background.add_task(access_log.record_login, user, ip, user_agent)
    logger.info("PIN accepted", extra={"user_id": user.id, "role": user.role})
    return LoginResult(token=token, user=user)
