from __future__ import annotations

from typing import Any

import requests
from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext

from minibus.config import NOTIFICATION_SERVICE_URL
from minibus.phone import mask_phone

logger = Logger()
tracer = Tracer()

_http = requests.Session()

REQUEST_TIMEOUT_SECONDS = 10


def _route(detail_type: str, detail: dict[str, Any]) -> tuple[str, dict[str, Any]] | None:
    if detail_type == "SmsRequested":
        return "/notify/sms", {"to": detail.get("to"), "message": detail.get("message")}
    if detail_type == "EmailRequested":
        return "/notify/email", {
            "to": detail.get("to"),
            "subject": detail.get("subject"),
            "text": detail.get("text"),
        }
    return None


@tracer.capture_lambda_handler
def lambda_handler(event: dict[str, Any], context: LambdaContext) -> None:
    # Invoked asynchronously by EventBridge; raising hands the event back
    # to the Lambda retry policy
    detail_type = event.get("detail-type", "")
    detail = event.get("detail") or {}

    route = _route(detail_type, detail)
    if route is None:
        logger.warning("Skipping unsupported notification", extra={"detail_type": detail_type})
        return
    if not NOTIFICATION_SERVICE_URL:
        logger.error("NOTIFICATION_SERVICE_URL is not configured", extra={"detail_type": detail_type})
        return

    path, payload = route
    if not payload.get("to"):
        logger.warning("Skipping notification without recipient", extra={"detail_type": detail_type})
        return

    resp = _http.post(
        f"{NOTIFICATION_SERVICE_URL.rstrip('/')}{path}",
        json=payload,
        timeout=REQUEST_TIMEOUT_SECONDS,
    )
    resp.raise_for_status()

    recipient = payload["to"]
    logger.info(
        "Notification delivered",
        extra={
            "detail_type": detail_type,
            "to": mask_phone(recipient) if isinstance(recipient, str) else len(recipient),
        },
    )
