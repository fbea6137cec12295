"""Booking storage.

Every booking is its own item (``booking#<resource>#<id>``) and is never
deleted. Overlap checks read the calendar documents instead
(``calendar#<resource>#<year>``): one per UTC year, holding only the slots of
confirmed bookings that touch that year, so their size depends on how busy a
year is rather than on the whole history. The head document
(``bookings#<resource>``) carries the id sequence and counters; every
admission and cancellation rewrites it in the same transaction, which
serializes them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, NamedTuple, TypedDict, cast
from zoneinfo import ZoneInfo

from aws_lambda_powertools import Logger

from . import store
from .booking_rules import find_conflicts, listing_order
from .config import DISPLAY_TIMEZONE, RESOURCE_ID
from .errors import BookingNotFound, OverlapConflict, ValidationError
from .models import Booking, User
from .phone import mask_phone

logger = Logger()

LEDGER_KEY = f"bookings#{RESOURCE_ID}"

# Head, booking and calendar documents must fit in one transaction
MAX_SPAN_YEARS = 10


class BookingItem(TypedDict, total=False):
    booking_id: int
    resource_id: str
    user_id: int
    name: str
    phone: str
    start_date: str
    end_date: str
    purpose: str | None
    status: str
    created_at: str
    cancelled_at: str


class Slot(NamedTuple):
    booking_id: int
    start_date: datetime
    end_date: datetime
    status: str = "confirmed"


def booking_key(booking_id: int) -> str:
    return f"booking#{RESOURCE_ID}#{booking_id}"


def calendar_key(year: int) -> str:
    return f"calendar#{RESOURCE_ID}#{year}"


def _dt_to_iso(dt: datetime) -> str:
    return as_utc(dt).isoformat()


def _iso_to_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are wall-clock times in the display timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo(DISPLAY_TIMEZONE))
    return dt.astimezone(UTC)


def _years(start: datetime, end: datetime) -> range:
    return range(start.year, end.year + 1)


def _slots(calendar: dict[str, Any] | None) -> list[dict[str, Any]]:
    if calendar is None:
        return []
    return [it for it in calendar.get("slots") or [] if isinstance(it, dict)]


def _to_slot(raw: dict[str, Any]) -> Slot:
    return Slot(int(raw["booking_id"]), _iso_to_dt(raw["start_date"]), _iso_to_dt(raw["end_date"]))


def _counters(head: dict[str, Any] | None) -> dict[str, int]:
    metadata = (head or {}).get("metadata") or {}
    return {
        name: int(metadata.get(name, 0))
        for name in ("total_bookings", "confirmed_bookings", "cancelled_bookings")
    }


def _admit_once(owner: User, start: datetime, end: datetime, purpose: str | None, created_at: datetime) -> Booking:
    head = store.get_document(LEDGER_KEY)
    calendars = {year: store.get_document(calendar_key(year)) for year in _years(start, end)}

    taken = {int(raw["booking_id"]): _to_slot(raw) for cal in calendars.values() for raw in _slots(cal)}
    conflicts = find_conflicts(start, end, taken.values())
    if conflicts:
        logger.info(
            "Booking rejected, overlap",
            extra={
                "phone": mask_phone(owner.phone),
                "conflicting_ids": sorted(s.booking_id for s in conflicts),
            },
        )
        raise OverlapConflict()

    booking_id = int((head or {}).get("next_id", 1))
    item: BookingItem = {
        "booking_id": booking_id,
        "resource_id": RESOURCE_ID,
        "user_id": owner.id,
        "name": owner.name,
        "phone": owner.phone,
        "start_date": _dt_to_iso(start),
        "end_date": _dt_to_iso(end),
        "purpose": purpose,
        "status": "confirmed",
        "created_at": _dt_to_iso(created_at),
    }
    slot = {"booking_id": booking_id, "start_date": item["start_date"], "end_date": item["end_date"]}

    counters = _counters(head)
    counters["total_bookings"] += 1
    counters["confirmed_bookings"] += 1
    writes = [
        store.DocumentWrite(
            LEDGER_KEY,
            {"next_id": booking_id + 1, "metadata": counters},
            store.version_of(head),
        ),
        store.DocumentWrite(booking_key(booking_id), dict(item), None),
    ]
    for year, cal in calendars.items():
        writes.append(
            store.DocumentWrite(calendar_key(year), {"year": year, "slots": [*_slots(cal), slot]}, store.version_of(cal))
        )
    store.commit(writes)
    return _to_model(item)


def admit_booking(
    owner: User,
    start: datetime,
    end: datetime,
    purpose: str | None,
    now: datetime | None = None,
) -> Booking:
    """Store a confirmed booking unless it overlaps a confirmed one.

    The overlap check and the write are committed against the versions that
    were read, so a concurrent admission forces a re-check instead of a
    double booking.
    """
    start, end = as_utc(start), as_utc(end)
    if len(_years(start, end)) > MAX_SPAN_YEARS:
        raise ValidationError(f"A booking cannot span more than {MAX_SPAN_YEARS} years")
    created_at = now or datetime.now(UTC)

    booking = store.retry_on_conflict(LEDGER_KEY, lambda: _admit_once(owner, start, end, purpose, created_at))
    logger.info("Booking created", extra={"booking_id": booking.booking_id, "phone": mask_phone(owner.phone)})
    return booking


def get_booking(booking_id: int) -> Booking:
    item = store.get_document(booking_key(booking_id))
    if item is None:
        raise BookingNotFound()
    return _to_model(cast(BookingItem, item))


def list_bookings(now: datetime | None = None) -> list[Booking]:
    head = store.get_document(LEDGER_KEY) or {}
    next_id = int(head.get("next_id", 1))
    found = store.get_documents(booking_key(i) for i in range(1, next_id))
    bookings = [_to_model(cast(BookingItem, item)) for item in found.values()]
    return listing_order(bookings, now or datetime.now(UTC))


def _cancel_once(booking_id: int, cancelled_at: datetime) -> tuple[Booking, bool]:
    head = store.get_document(LEDGER_KEY)
    item = store.get_document(booking_key(booking_id))
    if item is None:
        raise BookingNotFound()
    if item.get("status") == "cancelled":
        return _to_model(cast(BookingItem, item)), False

    booking = _to_model(cast(BookingItem, item))
    years = _years(booking.start_date, booking.end_date)
    calendars = {year: store.get_document(calendar_key(year)) for year in years}

    updated = cast(BookingItem, {k: v for k, v in item.items() if k not in ("pk", "version", "last_updated")})
    updated["status"] = "cancelled"
    updated["cancelled_at"] = _dt_to_iso(cancelled_at)

    counters = _counters(head)
    counters["confirmed_bookings"] = max(0, counters["confirmed_bookings"] - 1)
    counters["cancelled_bookings"] += 1
    writes = [
        store.DocumentWrite(
            LEDGER_KEY,
            {"next_id": int((head or {}).get("next_id", booking_id + 1)), "metadata": counters},
            store.version_of(head),
        ),
        store.DocumentWrite(booking_key(booking_id), dict(updated), store.version_of(item)),
    ]
    for year, cal in calendars.items():
        if cal is None:
            continue
        remaining = [raw for raw in _slots(cal) if int(raw["booking_id"]) != booking_id]
        writes.append(store.DocumentWrite(calendar_key(year), {"year": year, "slots": remaining}, store.version_of(cal)))
    store.commit(writes)
    return _to_model(updated), True


def cancel_booking(booking_id: int, now: datetime | None = None) -> tuple[Booking, bool]:
    """Mark a booking cancelled and free its slot. Returns the booking and whether it changed."""
    cancelled_at = now or datetime.now(UTC)
    booking, changed = store.retry_on_conflict(LEDGER_KEY, lambda: _cancel_once(booking_id, cancelled_at))
    if changed:
        logger.info("Booking cancelled", extra={"booking_id": booking_id})
    return booking, changed


def _to_model(item: BookingItem) -> Booking:
    cancelled_at = item.get("cancelled_at")
    return Booking(
        booking_id=int(item["booking_id"]),
        resource_id=item.get("resource_id", RESOURCE_ID),
        user_id=int(item["user_id"]),
        name=item["name"],
        phone=item["phone"],
        start_date=_iso_to_dt(item["start_date"]),
        end_date=_iso_to_dt(item["end_date"]),
        purpose=item.get("purpose"),
        status=item.get("status", "confirmed"),  # type: ignore[arg-type]
        created_at=_iso_to_dt(item["created_at"]),
        cancelled_at=_iso_to_dt(cancelled_at) if cancelled_at else None,
    )
