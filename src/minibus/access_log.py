from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from . import store
from .errors import DependencyError
from .models import AccessLogEntry, User

logger = Logger()

ACCESS_LOG_KEY = "access_logs"
MAX_ENTRIES = 20


def record_login(user: User, ip: str | None, user_agent: str | None, now: datetime | None = None) -> None:
    """Prepend a login entry. Failures are logged and never reach the caller."""
    entry = AccessLogEntry(
        user_id=user.id,
        name=user.name,
        phone=user.phone,
        role=user.role,
        timestamp=now or datetime.now(UTC),
        ip=ip or "unknown",
        user_agent=user_agent or "unknown",
    )

    def prepend(doc: dict[str, Any]) -> None:
        logs = [it for it in doc.get("logs") or [] if isinstance(it, dict)]
        doc["logs"] = [entry.model_dump(mode="json"), *logs][:MAX_ENTRIES]

    try:
        store.modify_document(ACCESS_LOG_KEY, prepend)
    except (ClientError, BotoCoreError, DependencyError):
        logger.exception("Failed to record access log entry", extra={"user_id": user.id})


def recent_logins() -> list[AccessLogEntry]:
    doc = store.get_document(ACCESS_LOG_KEY) or {}
    return [AccessLogEntry.model_validate(it) for it in doc.get("logs") or [] if isinstance(it, dict)]
