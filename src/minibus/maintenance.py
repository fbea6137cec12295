"""Expiry dates of the vehicle's legal documents (insurance, inspection, road tax)."""

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from typing import Any

from aws_lambda_powertools import Logger

from . import store
from .errors import ValidationError
from .models import DocumentType, MaintenanceItem, User

logger = Logger()

MAINTENANCE_KEY = "maintenance"

LABELS: dict[DocumentType, str] = {"insurance": "RCA", "itp": "ITP", "vignette": "Rovigneta"}

# Lower-cased names the app and administrators use for each document
_ALIASES: dict[str, DocumentType] = {
    "insurance": "insurance",
    "rca": "insurance",
    "itp": "itp",
    "vignette": "vignette",
    "rovinieta": "vignette",
    "rovigneta": "vignette",
}

_DATE_FORMAT = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")


def document_type(raw: str) -> DocumentType:
    try:
        return _ALIASES[raw.strip().lower()]
    except KeyError:
        raise ValidationError("Invalid document type. Accepted: insurance/rca, itp, vignette/rovinieta") from None


def parse_expiry(raw: str) -> date:
    if not _DATE_FORMAT.match(raw.strip()):
        raise ValidationError("Invalid date format, use YYYY-MM-DD")
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        raise ValidationError("Invalid date") from None


def maintenance_status() -> list[MaintenanceItem]:
    """Known documents, soonest expiry first."""
    doc = store.get_document(MAINTENANCE_KEY) or {}
    entries: dict[str, Any] = doc.get("documents") or {}
    items = [
        MaintenanceItem.model_validate({**entry, "type": doc_type, "label": LABELS[doc_type]})
        for doc_type, entry in entries.items()
        if doc_type in LABELS
    ]
    items.sort(key=lambda it: (it.expiry_date, it.type))
    return items


def update_expiry(raw_type: str, raw_expiry: str, admin: User, now: datetime | None = None) -> MaintenanceItem:
    doc_type = document_type(raw_type)
    expiry = parse_expiry(raw_expiry)
    entry = {
        "expiry_date": expiry.isoformat(),
        "status": "active",
        "updated_at": (now or datetime.now(UTC)).isoformat(),
        "updated_by": admin.id,
    }

    def apply(doc: dict[str, Any]) -> None:
        documents = dict(doc.get("documents") or {})
        documents[doc_type] = entry
        doc["documents"] = documents

    store.modify_document(MAINTENANCE_KEY, apply)
    logger.info("Maintenance updated", extra={"type": doc_type, "expiry_date": entry["expiry_date"], "admin_id": admin.id})
    return MaintenanceItem.model_validate({**entry, "type": doc_type, "label": LABELS[doc_type]})
