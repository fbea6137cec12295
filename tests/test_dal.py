from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from botocore.exceptions import ClientError

from minibus import dal
from minibus.errors import BookingNotFound, OverlapConflict, ValidationError, WriteContentionError


def d(day: int) -> datetime:
    return datetime(2025, 1, day, tzinfo=UTC)


@pytest.fixture()
def owner(make_user):
    return make_user("Ana Pop", "0722 123 456")


def test_admit_and_get_booking(owner) -> None:
    booking = dal.admit_booking(owner, d(10), d(12), "Choir trip")
    fetched = dal.get_booking(booking.booking_id)
    assert fetched == booking
    assert fetched.status == "confirmed"
    assert fetched.phone == "+40722123456"
    assert fetched.name == "Ana Pop"


def test_ids_come_from_the_ledger_sequence(owner) -> None:
    first = dal.admit_booking(owner, d(1), d(2), None)
    second = dal.admit_booking(owner, d(3), d(4), None)
    assert (first.booking_id, second.booking_id) == (1, 2)


def test_overlapping_booking_is_rejected(owner, make_user) -> None:
    other = make_user("Ion", "0733 000 111")
    dal.admit_booking(owner, d(10), d(12), None)
    with pytest.raises(OverlapConflict):
        dal.admit_booking(other, d(11), d(13), None)
    assert len(dal.list_bookings()) == 1


def test_adjacent_day_is_admitted(owner) -> None:
    dal.admit_booking(owner, d(10), d(12), None)
    z = dal.admit_booking(owner, d(13), d(15), None)
    assert z.booking_id == 2


def test_booking_starting_at_existing_end_is_rejected(owner) -> None:
    dal.admit_booking(owner, d(10), d(12), None)
    with pytest.raises(OverlapConflict):
        dal.admit_booking(owner, d(12), d(14), None)


def test_cancelled_booking_no_longer_blocks(owner) -> None:
    x = dal.admit_booking(owner, d(10), d(12), None)
    cancelled, changed = dal.cancel_booking(x.booking_id)
    assert changed is True
    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_at is not None

    y = dal.admit_booking(owner, d(11), d(13), None)
    assert y.status == "confirmed"


def test_cancel_twice_reports_no_change(owner) -> None:
    x = dal.admit_booking(owner, d(10), d(12), None)
    dal.cancel_booking(x.booking_id)
    _, changed = dal.cancel_booking(x.booking_id)
    assert changed is False


def test_cancel_unknown_booking_raises() -> None:
    with pytest.raises(BookingNotFound):
        dal.cancel_booking(404)


def test_get_booking_not_found_raises() -> None:
    with pytest.raises(BookingNotFound):
        dal.get_booking(1)


def test_list_bookings_orders_upcoming_before_past(owner) -> None:
    past = dal.admit_booking(owner, d(1), d(2), None)
    later = dal.admit_booking(owner, d(25), d(26), None)
    sooner = dal.admit_booking(owner, d(20), d(21), None)

    ids = [b.booking_id for b in dal.list_bookings(now=d(15))]

    assert ids == [sooner.booking_id, later.booking_id, past.booking_id]


def test_naive_datetimes_are_local_wall_clock_times(owner) -> None:
    # Europe/Bucharest is UTC+2 in winter and UTC+3 in summer
    winter = dal.admit_booking(owner, datetime(2030, 1, 1, 12, 0), datetime(2030, 1, 1, 18, 0), None)
    summer = dal.admit_booking(owner, datetime(2030, 7, 10, 8, 0), datetime(2030, 7, 10, 12, 0), None)
    assert winter.start_date == datetime(2030, 1, 1, 10, 0, tzinfo=UTC)
    assert summer.start_date == datetime(2030, 7, 10, 5, 0, tzinfo=UTC)
    assert summer.end_date.tzinfo is not None


def test_aware_datetimes_keep_their_instant(owner) -> None:
    start = datetime(2030, 7, 10, 8, 0, tzinfo=ZoneInfo("America/New_York"))
    booking = dal.admit_booking(owner, start, start + timedelta(hours=2), None)
    assert booking.start_date == datetime(2030, 7, 10, 12, 0, tzinfo=UTC)


def test_ledger_counters_are_maintained(owner, table) -> None:
    x = dal.admit_booking(owner, d(10), d(12), None, now=d(1))
    dal.admit_booking(owner, d(20), d(22), None, now=d(1))
    dal.cancel_booking(x.booking_id, now=d(2))

    head = table.items[dal.LEDGER_KEY]
    assert head["metadata"] == {"total_bookings": 2, "confirmed_bookings": 1, "cancelled_bookings": 1}
    assert head["next_id"] == 3


def test_each_booking_is_its_own_item(owner, table) -> None:
    x = dal.admit_booking(owner, d(10), d(12), "Choir trip")
    row = table.items[dal.booking_key(x.booking_id)]
    assert row["purpose"] == "Choir trip"
    assert "bookings" not in table.items[dal.LEDGER_KEY]


def test_calendar_holds_only_confirmed_slots(owner, table) -> None:
    x = dal.admit_booking(owner, d(10), d(12), None)
    y = dal.admit_booking(owner, d(20), d(22), None)
    calendar = table.items[dal.calendar_key(2025)]
    assert [int(s["booking_id"]) for s in calendar["slots"]] == [x.booking_id, y.booking_id]

    dal.cancel_booking(x.booking_id)
    calendar = table.items[dal.calendar_key(2025)]
    assert [int(s["booking_id"]) for s in calendar["slots"]] == [y.booking_id]
    # The cancelled booking stays listed
    assert {b.booking_id: b.status for b in dal.list_bookings()} == {x.booking_id: "cancelled", y.booking_id: "confirmed"}


def test_booking_across_new_year_blocks_both_years(owner, make_user, table) -> None:
    other = make_user("Ion", "0733 000 111")
    dal.admit_booking(owner, datetime(2025, 12, 30, tzinfo=UTC), datetime(2026, 1, 2, tzinfo=UTC), None)
    assert dal.calendar_key(2025) in table.items
    assert dal.calendar_key(2026) in table.items

    with pytest.raises(OverlapConflict):
        dal.admit_booking(other, datetime(2026, 1, 1, tzinfo=UTC), datetime(2026, 1, 5, tzinfo=UTC), None)
    with pytest.raises(OverlapConflict):
        dal.admit_booking(other, datetime(2025, 12, 1, tzinfo=UTC), datetime(2025, 12, 30, tzinfo=UTC), None)


def test_overly_long_period_is_rejected(owner) -> None:
    with pytest.raises(ValidationError):
        dal.admit_booking(owner, datetime(2025, 1, 1, tzinfo=UTC), datetime(2040, 1, 1, tzinfo=UTC), None)


def test_document_sizes_stay_bounded_as_history_grows(owner, table) -> None:
    purpose = "Youth group trip to the regional conference, pick-up at the church parking lot at 7:30"
    start = datetime(2025, 1, 1, 8, 0, tzinfo=UTC)
    for i in range(1500):
        begin = start + timedelta(days=2 * i)
        dal.admit_booking(owner, begin, begin + timedelta(hours=10), purpose)

    sizes = {key: len(json.dumps(item, default=str)) for key, item in table.items.items()}
    # DynamoDB rejects items over 400 KB; the largest document is one year's calendar
    assert max(sizes.values()) < 40_000
    assert sizes[dal.LEDGER_KEY] < 1_000
    assert len(dal.list_bookings()) == 1500


def test_concurrent_admission_is_rechecked(owner, make_user, table, monkeypatch) -> None:
    """A competing writer commits an overlapping booking between our read and our commit."""
    rival = make_user("Ion", "0733 000 111")
    real_commit = table.transact_write_items
    raced = {"done": False}

    def racing_commit(TransactItems):  # noqa NOSONAR
        if not raced["done"]:
            raced["done"] = True
            dal.admit_booking(rival, d(10), d(12), None)
        return real_commit(TransactItems=TransactItems)

    monkeypatch.setattr(table, "transact_write_items", racing_commit)

    with pytest.raises(OverlapConflict):
        dal.admit_booking(owner, d(11), d(13), None)
    confirmed = [b for b in dal.list_bookings() if b.status == "confirmed"]
    assert [b.name for b in confirmed] == ["Ion"]


def test_concurrent_cancellation_is_applied_once(owner, table, monkeypatch) -> None:
    x = dal.admit_booking(owner, d(10), d(12), None)
    real_commit = table.transact_write_items
    raced = {"done": False}

    def racing_commit(TransactItems):  # noqa NOSONAR
        if not raced["done"]:
            raced["done"] = True
            dal.cancel_booking(x.booking_id)
        return real_commit(TransactItems=TransactItems)

    monkeypatch.setattr(table, "transact_write_items", racing_commit)

    _, changed = dal.cancel_booking(x.booking_id)
    assert changed is False
    assert table.items[dal.LEDGER_KEY]["metadata"]["cancelled_bookings"] == 1


def test_persistent_contention_gives_up_without_writing(owner, table, monkeypatch) -> None:
    dal.admit_booking(owner, d(1), d(2), None)

    def always_cancelled(TransactItems):  # noqa NOSONAR
        raise ClientError(
            {
                "Error": {"Code": "TransactionCanceledException", "Message": "Transaction cancelled"},
                "CancellationReasons": [{"Code": "ConditionalCheckFailed"}],
            },
            "TransactWriteItems",
        )

    monkeypatch.setattr(table, "transact_write_items", always_cancelled)
    with pytest.raises(WriteContentionError):
        dal.admit_booking(owner, d(10), d(12), None)
    assert [b.booking_id for b in dal.list_bookings()] == [1]


def test_other_store_failures_are_not_retried(owner, table, monkeypatch) -> None:
    failing = MagicMock(
        side_effect=ClientError({"Error": {"Code": "ValidationException", "Message": "Item size too large"}}, "TransactWriteItems")
    )
    monkeypatch.setattr(table, "transact_write_items", failing)
    with pytest.raises(ClientError):
        dal.admit_booking(owner, d(10), d(12), None)
    failing.assert_called_once()
