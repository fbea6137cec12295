from __future__ import annotations

from datetime import datetime

from aws_lambda_powertools import Logger, Tracer
from fastapi import BackgroundTasks

from . import dal, notifier, users
from .errors import Forbidden, ValidationError
from .models import Booking, BookingCreate

logger = Logger()
tracer = Tracer()


@tracer.capture_method
def create_booking(owner_phone: str, payload: BookingCreate, background: BackgroundTasks) -> Booking:
    owner = users.find_by_phone(owner_phone)
    start, end = dal.as_utc(payload.start_date), dal.as_utc(payload.end_date)
    if end < start:
        raise ValidationError("End date must not be before start date")

    booking = dal.admit_booking(owner, start, end, payload.purpose)
    background.add_task(notifier.notify_booking_created, booking)
    return booking


@tracer.capture_method
def cancel_booking(booking_id: int, requester_phone: str, background: BackgroundTasks) -> Booking:
    booking = dal.get_booking(booking_id)
    requester = users.find_by_phone(requester_phone)
    if requester.role != "admin" and requester.phone != booking.phone:
        logger.info("Cancellation refused", extra={"booking_id": booking_id, "requester_id": requester.id})
        raise Forbidden("You are not allowed to cancel this booking")

    cancelled, changed = dal.cancel_booking(booking_id)
    if changed:
        background.add_task(notifier.notify_booking_cancelled, cancelled)
    return cancelled


def list_bookings(now: datetime | None = None) -> list[Booking]:
    return dal.list_bookings(now)


def get_booking(booking_id: int) -> Booking:
    return dal.get_booking(booking_id)
