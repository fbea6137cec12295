"""Interval rules for the shared vehicle.

Bookings are closed intervals: a booking ending at the instant another one
starts still overlaps it.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol, TypeVar

from .models import Booking


class Period(Protocol):
    @property
    def start_date(self) -> datetime: ...

    @property
    def end_date(self) -> datetime: ...

    @property
    def status(self) -> str: ...


P = TypeVar("P", bound=Period)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start <= b_end and b_start <= a_end


def find_conflicts(start: datetime, end: datetime, bookings: Iterable[P]) -> list[P]:
    return [
        b
        for b in bookings
        if b.status != "cancelled" and overlaps(start, end, b.start_date, b.end_date)
    ]


def listing_order(bookings: Iterable[Booking], now: datetime) -> list[Booking]:
    """Upcoming bookings soonest first, then past ones most recently ended first."""
    upcoming: list[Booking] = []
    past: list[Booking] = []
    for b in bookings:
        (past if b.end_date < now else upcoming).append(b)
    upcoming.sort(key=lambda b: (b.start_date, b.booking_id))
    past.sort(key=lambda b: (b.end_date, b.booking_id), reverse=True)
    return upcoming + past
