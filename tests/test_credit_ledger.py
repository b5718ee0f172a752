"""Credit ledger: pure queries, versioned writes, spend/revert/cancel/grant."""

from __future__ import annotations

import json

import pytest

from coachbook.errors import (
    BookingNotFoundError,
    DuplicateBookingError,
    InsufficientCreditError,
    InvalidDurationError,
    LedgerConflictError,
    TooLateToCancelError,
)
from coachbook.models import Users
from coachbook.services import credits
from coachbook.services.credits import (
    Booking,
    Purchase,
    conditional_update_purchases,
    load_purchases,
    read_ledger,
    remaining_credits,
    select_purchase,
)
from tests.helpers import MONDAY, TODAY, TOMORROW, purchase


def _booking(bid: str, time_str: str = "09:00", duration: int = 30, key: str | None = None, day=MONDAY) -> Booking:
    return Booking(
        id=bid,
        date=day.isoformat(),
        time=time_str,
        duration=duration,
        booked_at="2026-06-03T20:00:00+00:00",
        calendar_event_id=f"cb{bid}",
        idempotency_key=key,
    )


def _stored(db, user_id: int) -> list[dict]:
    return json.loads(db.query(Users.purchases).filter(Users.id == user_id).scalar())


class TestPureQueries:
    def test_remaining_counts_active_purchases_per_duration(self) -> None:
        purchases = load_purchases(json.dumps([
            purchase("a", duration=30, total=4, used=1),
            purchase("b", duration=60, total=2, used=2),
            purchase("c", duration=60, total=5, used=0, status="cancelled"),
        ]))

        assert remaining_credits(purchases, (30, 60)) == {30: 3, 60: 0}

    def test_every_duration_class_reported(self) -> None:
        assert remaining_credits([], (30, 60)) == {30: 0, 60: 0}

    def test_legacy_type_derives_duration(self) -> None:
        legacy = [
            {"id": 1, "type": "trial", "sessions_total": 1, "sessions_used": 0, "status": "active"},
            {"id": 2, "type": "single", "sessions_total": 3, "sessions_used": 1, "status": "active"},
        ]

        purchases = load_purchases(json.dumps(legacy))

        assert [p.duration_minutes for p in purchases] == [30, 60]
        assert remaining_credits(purchases, (30, 60)) == {30: 1, 60: 2}
        # Unknown keys survive a rewrite
        assert purchases[0].to_dict()["type"] == "trial"

    def test_oldest_purchase_spent_first(self) -> None:
        purchases = [
            Purchase.from_dict(purchase("newer", purchase_date="2026-05-20T00:00:00+00:00")),
            Purchase.from_dict(purchase("10", purchase_date="2026-05-01T00:00:00+00:00")),
            Purchase.from_dict(purchase("9", purchase_date="2026-05-01T00:00:00+00:00")),
            Purchase.from_dict(purchase("used", purchase_date="2026-04-01T00:00:00+00:00", used=1)),
        ]

        assert select_purchase(purchases, 30).id == "9"
        assert select_purchase(purchases, 60) is None


class TestConditionalUpdate:
    def test_stale_version_is_rejected(self, db, make_user) -> None:
        user = make_user([purchase()])
        purchases, version = read_ledger(db, user.id)

        assert conditional_update_purchases(db, user.id, version, purchases) is True
        assert conditional_update_purchases(db, user.id, version, purchases) is False
        assert read_ledger(db, user.id)[1] == version + 1


class TestSpend:
    def test_single_credit_is_spent_once(self, db, make_user, ledger) -> None:
        user = make_user([purchase(duration=30, total=1)])
        assert ledger.credits(db, user.id) == {30: 1, 60: 0}

        ledger.spend(db, user.id, _booking("b1", "09:00"))

        assert ledger.credits(db, user.id) == {30: 0, 60: 0}
        with pytest.raises(InsufficientCreditError):
            ledger.spend(db, user.id, _booking("b2", "10:00"))

    def test_wrong_duration_is_insufficient(self, db, make_user, ledger) -> None:
        user = make_user([purchase(duration=30, total=3)])

        with pytest.raises(InsufficientCreditError) as exc:
            ledger.spend(db, user.id, _booking("b1", duration=60))

        assert "60-minute" in exc.value.message
        assert read_ledger(db, user.id)[1] == 0

    def test_spend_records_booking_on_purchase(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=2)])

        ledger.spend(db, user.id, _booking("b1", key="key-1"))

        stored = _stored(db, user.id)[0]
        assert stored["sessions_used"] == 1
        assert stored["bookings"][0]["id"] == "b1"
        assert stored["bookings"][0]["status"] == "confirmed"
        assert stored["bookings"][0]["idempotency_key"] == "key-1"

    def test_same_idempotency_key_is_duplicate(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=5)])
        ledger.spend(db, user.id, _booking("b1", "09:00", key="key-1"))

        with pytest.raises(DuplicateBookingError) as exc:
            ledger.spend(db, user.id, _booking("b2", "10:00", key="key-1"))

        assert exc.value.booking.id == "b1"
        assert ledger.credits(db, user.id) == {30: 4, 60: 0}

    def test_same_slot_is_duplicate(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=5)])
        ledger.spend(db, user.id, _booking("b1", "09:00"))

        with pytest.raises(DuplicateBookingError):
            ledger.spend(db, user.id, _booking("b2", "09:00"))

    def test_lost_race_retries_and_finds_no_credit(self, db, make_user, ledger, monkeypatch) -> None:
        user = make_user([purchase(duration=30, total=1)])
        real_read = credits.read_ledger
        raced = []

        def racing_read(session, user_id):
            snapshot = real_read(session, user_id)
            if not raced:
                # Another request spends the last credit between our read and write
                raced.append(True)
                ledger.spend(session, user_id, _booking("theirs", "10:00"))
            return snapshot

        monkeypatch.setattr(credits, "read_ledger", racing_read)

        with pytest.raises(InsufficientCreditError):
            ledger.spend(db, user.id, _booking("mine", "09:00"))

        bookings = _stored(db, user.id)[0]["bookings"]
        assert [b["id"] for b in bookings] == ["theirs"]
        assert _stored(db, user.id)[0]["sessions_used"] == 1

    def test_retries_exhausted_raise_conflict(self, db, make_user, ledger, monkeypatch) -> None:
        user = make_user([purchase(total=3)])
        monkeypatch.setattr(credits, "conditional_update_purchases", lambda *args: False)

        with pytest.raises(LedgerConflictError):
            ledger.spend(db, user.id, _booking("b1"))

        assert ledger.credits(db, user.id) == {30: 3, 60: 0}


class TestRevert:
    def test_revert_gives_credit_back_once(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=2)])
        ledger.spend(db, user.id, _booking("b1"))

        assert ledger.revert(db, user.id, "b1") is True
        version = read_ledger(db, user.id)[1]
        assert ledger.revert(db, user.id, "b1") is True

        assert read_ledger(db, user.id)[1] == version
        assert ledger.credits(db, user.id) == {30: 2, 60: 0}
        assert _stored(db, user.id)[0]["bookings"][0]["status"] == "failed"

    def test_revert_of_unknown_booking_is_noop(self, db, make_user, ledger) -> None:
        user = make_user([purchase()])

        assert ledger.revert(db, user.id, "missing") is False
        assert read_ledger(db, user.id)[1] == 0

    def test_credits_conserved_across_operations(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=3)])
        ledger.spend(db, user.id, _booking("b1", "09:00"))
        ledger.spend(db, user.id, _booking("b2", "09:30"))
        ledger.revert(db, user.id, "b1")
        ledger.cancel(db, user.id, "b2", TODAY)
        ledger.spend(db, user.id, _booking("b3", "10:00"))

        stored = _stored(db, user.id)[0]
        confirmed = [b for b in stored["bookings"] if b["status"] == "confirmed"]
        assert stored["sessions_used"] == len(confirmed) == 1
        assert ledger.credits(db, user.id)[30] + stored["sessions_used"] == stored["sessions_total"]


class TestCancel:
    def test_cancel_restores_credit(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=1)])
        ledger.spend(db, user.id, _booking("b1", day=TOMORROW))

        booking, changed = ledger.cancel(db, user.id, "b1", TODAY)

        assert changed is True
        assert booking.status == "cancelled"
        assert booking.cancelled_at
        assert ledger.credits(db, user.id) == {30: 1, 60: 0}

    def test_repeat_cancel_changes_nothing(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=1)])
        ledger.spend(db, user.id, _booking("b1"))
        ledger.cancel(db, user.id, "b1", TODAY)

        booking, changed = ledger.cancel(db, user.id, "b1", TODAY)

        assert changed is False
        assert ledger.credits(db, user.id) == {30: 1, 60: 0}

    def test_same_day_cancel_rejected(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=1)])
        ledger.spend(db, user.id, _booking("b1", day=TOMORROW))

        with pytest.raises(TooLateToCancelError):
            ledger.cancel(db, user.id, "b1", TOMORROW)

        assert ledger.credits(db, user.id) == {30: 0, 60: 0}

    def test_unknown_or_failed_booking_not_found(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=1)])
        ledger.spend(db, user.id, _booking("b1"))
        ledger.revert(db, user.id, "b1")

        with pytest.raises(BookingNotFoundError):
            ledger.cancel(db, user.id, "b1", TODAY)
        with pytest.raises(BookingNotFoundError):
            ledger.cancel(db, user.id, "nope", TODAY)


class TestGrant:
    def test_grant_is_idempotent_on_payment(self, db, make_user, ledger) -> None:
        user = make_user()

        first, created = ledger.grant(db, user.id, "pi_123", duration=60, sessions=4, package_id="pack-4")
        again, created_again = ledger.grant(db, user.id, "pi_123", duration=60, sessions=4)

        assert created is True
        assert created_again is False
        assert again.id == first.id
        assert ledger.credits(db, user.id) == {30: 0, 60: 4}
        assert len(_stored(db, user.id)) == 1

    def test_grant_rejects_unknown_duration(self, db, make_user, ledger) -> None:
        user = make_user()

        with pytest.raises(InvalidDurationError):
            ledger.grant(db, user.id, "pi_1", duration=45, sessions=1)

    def test_bookings_listed_newest_first(self, db, make_user, ledger) -> None:
        user = make_user([purchase(total=3)])
        ledger.spend(db, user.id, _booking("early", "09:00", day=TOMORROW))
        ledger.spend(db, user.id, _booking("late", "11:00", day=MONDAY))

        assert [b.id for b in ledger.bookings(db, user.id)] == ["late", "early"]
