"""Outbound notifications.

Messages are published to EventBridge and delivered by the notification relay.
Every function here swallows its own failures: callers schedule them as
background tasks and never depend on their outcome.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, cast
from zoneinfo import ZoneInfo

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from . import users
from .config import DISPLAY_TIMEZONE, EVENT_BUS_NAME
from .errors import UserNotFound
from .models import Booking, Issue, User
from .phone import mask_phone

logger = Logger()

_events = boto3.client("events")

SOURCE = "minibus.notifications"


def _publish(detail_type: str, detail: dict[str, Any]) -> bool:
    try:
        resp = cast(
            dict[str, Any],
            _events.put_events(
                Entries=[
                    {
                        "Source": SOURCE,
                        "DetailType": detail_type,
                        "Detail": json.dumps(detail),
                        "EventBusName": EVENT_BUS_NAME,
                    }
                ]
            ),
        )
    except (ClientError, BotoCoreError):
        logger.exception("Failed to publish notification", extra={"detail_type": detail_type})
        return False
    if resp.get("FailedEntryCount"):
        logger.error("Notification rejected by event bus", extra={"detail_type": detail_type, "entries": resp.get("Entries")})
        return False
    return True


def send_sms(to: str, message: str) -> bool:
    sent = _publish("SmsRequested", {"to": to, "message": message})
    if sent:
        logger.info("SMS queued", extra={"to": mask_phone(to)})
    return sent


def send_email(to: list[str], subject: str, text: str) -> bool:
    if not to:
        return False
    sent = _publish("EmailRequested", {"to": to, "subject": subject, "text": text})
    if sent:
        logger.info("Email queued", extra={"recipients": len(to)})
    return sent


def _fmt_date(dt: datetime) -> str:
    return dt.astimezone(ZoneInfo(DISPLAY_TIMEZONE)).strftime("%d.%m.%Y %H:%M")


def _period(booking: Booking) -> str:
    return f"{_fmt_date(booking.start_date)} - {_fmt_date(booking.end_date)}"


def _booking_summary(booking: Booking) -> str:
    return (
        f"Name: {booking.name}\n"
        f"Period: {_period(booking)}\n"
        f"Purpose: {booking.purpose or 'Not specified'}\n"
    )


def _notify_admins(subject: str, text: str) -> None:
    try:
        recipients = users.admin_emails()
    except (ClientError, BotoCoreError):
        logger.exception("Could not load administrator emails")
        return
    if recipients:
        send_email(recipients, subject, text)


def notify_booking_created(booking: Booking) -> None:
    send_sms(booking.phone, f"Your minibus booking for {_period(booking)} is confirmed.")
    _notify_admins(
        f"{booking.name} made a booking",
        "New minibus booking\n\n" + _booking_summary(booking),
    )


def notify_booking_cancelled(booking: Booking) -> None:
    send_sms(booking.phone, f"Your minibus booking for {_period(booking)} has been cancelled.")
    _notify_admins(
        f"Booking cancelled: {booking.name}",
        "Minibus booking cancelled\n\n" + _booking_summary(booking),
    )


def notify_welcome(user: User) -> None:
    if not user.email:
        return
    try:
        admin_names = ", ".join(u.name for u in users.list_users() if u.role == "admin")
    except (ClientError, BotoCoreError):
        logger.exception("Could not load administrator names")
        admin_names = ""
    text = (
        f"Hello {user.name},\n\n"
        "An account was created for you in the minibus booking app.\n"
        f"Sign in with your phone number {user.phone}; a one-time PIN will be sent to you.\n"
    )
    if admin_names:
        text += f"\nAdministrators: {admin_names}\n"
    send_email([user.email], "Welcome to the minibus booking app", text)


_ISSUE_STATUS_TEXT = {"open": "reopened", "in_progress": "in progress", "resolved": "resolved"}


def notify_issue_reported(issue: Issue, reporter: User) -> None:
    try:
        phones = users.admin_phones()
        emails = users.admin_emails()
    except (ClientError, BotoCoreError):
        logger.exception("Could not load administrators", extra={"issue_id": issue.id})
        return
    message = f"{reporter.name} reported a new issue: {issue.title}. Severity: {issue.severity}"
    for phone in phones:
        send_sms(phone, message)
    if emails:
        send_email(
            emails,
            f"New issue: {issue.title} [{issue.severity.upper()}]",
            (
                "A problem with the minibus was reported\n\n"
                f"Title: {issue.title}\n"
                f"Description: {issue.description}\n"
                f"Severity: {issue.severity}\n"
                f"Location: {issue.location}\n\n"
                f"Reported by {reporter.name} ({reporter.phone}) on {_fmt_date(issue.created_at)}\n"
            ),
        )


def notify_issue_status(issue: Issue) -> None:
    try:
        reporter = users.get_user(issue.reported_by)
    except UserNotFound:
        logger.info("Issue reporter no longer exists", extra={"issue_id": issue.id})
        return
    except (ClientError, BotoCoreError):
        logger.exception("Could not load issue reporter", extra={"issue_id": issue.id})
        return
    message = f'The issue "{issue.title}" was marked as {_ISSUE_STATUS_TEXT[issue.status]}'
    if issue.resolution_notes:
        message += f". Note: {issue.resolution_notes}"
    send_sms(reporter.phone, message)


def pin_message(pin: str) -> str:
    return f"{pin} is your PIN for the minibus booking app.\n\n#{pin}"
