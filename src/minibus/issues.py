"""Problems with the vehicle reported by members and tracked by administrators.

Each issue is its own item (``issue#<id>``); ids come from an atomic counter.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from aws_lambda_powertools import Logger, Tracer
from fastapi import BackgroundTasks

from . import notifier, store, users
from .errors import IssueNotFound
from .models import Issue, IssueCreate, IssueUpdate, User

logger = Logger()
tracer = Tracer()

SEQUENCE_KEY = "issues"

UNKNOWN_REPORTER = "Unknown user"


def issue_key(issue_id: int) -> str:
    return f"issue#{issue_id}"


def _to_model(item: dict[str, Any]) -> Issue:
    return Issue.model_validate({k: v for k, v in item.items() if k not in ("pk", "version", "last_updated")})


def list_issues() -> list[Issue]:
    """Every issue, newest first, with the reporter's name and phone."""
    sequence = store.get_document(SEQUENCE_KEY) or {}
    last_id = int(sequence.get("last_id", 0))
    found = store.get_documents(issue_key(i) for i in range(1, last_id + 1))
    reporters = {u.id: u for u in users.list_users()}

    issues = []
    for item in found.values():
        issue = _to_model(item)
        reporter = reporters.get(issue.reported_by)
        issue.reporter_name = reporter.name if reporter else UNKNOWN_REPORTER
        issue.reporter_phone = reporter.phone if reporter else ""
        issues.append(issue)
    issues.sort(key=lambda i: (i.created_at, i.id), reverse=True)
    return issues


@tracer.capture_method
def report_issue(
    reporter: User,
    payload: IssueCreate,
    background: BackgroundTasks,
    now: datetime | None = None,
) -> Issue:
    issue_id = store.increment_counter(SEQUENCE_KEY, "last_id")
    issue = Issue(
        id=issue_id,
        reported_by=reporter.id,
        title=payload.title.strip(),
        description=payload.description.strip(),
        severity=payload.severity,
        location=payload.location.strip(),
        status="open",
        created_at=now or datetime.now(UTC),
    )
    body = issue.model_dump(mode="json", exclude={"reporter_name", "reporter_phone"})
    store.put_document(issue_key(issue_id), body, None)
    logger.info("Issue reported", extra={"issue_id": issue_id, "severity": issue.severity, "user_id": reporter.id})

    background.add_task(notifier.notify_issue_reported, issue, reporter)
    return issue


@tracer.capture_method
def update_issue(
    issue_id: int,
    payload: IssueUpdate,
    admin: User,
    background: BackgroundTasks,
    now: datetime | None = None,
) -> Issue:
    changed_at = now or datetime.now(UTC)

    def apply(doc: dict[str, Any]) -> tuple[Issue, str]:
        if not doc:
            raise IssueNotFound()
        previous = str(doc.get("status", "open"))
        doc["status"] = payload.status
        doc["resolution_notes"] = payload.resolution_notes
        doc["updated_at"] = changed_at.isoformat()
        if payload.status == "resolved":
            doc["resolved_at"] = changed_at.isoformat()
            doc["resolved_by"] = admin.id
        return _to_model(doc), previous

    issue, previous = store.modify_document(issue_key(issue_id), apply)
    logger.info(
        "Issue updated",
        extra={"issue_id": issue_id, "from_status": previous, "to_status": issue.status, "admin_id": admin.id},
    )
    if issue.status != previous:
        background.add_task(notifier.notify_issue_status, issue)
    return issue


def delete_issue(issue_id: int) -> None:
    if not store.delete_document(issue_key(issue_id)):
        raise IssueNotFound()
    logger.info("Issue deleted", extra={"issue_id": issue_id})
