"""HTTP surface: routing, dependency wiring and the error envelope."""

from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from coachbook import auth, main
from coachbook.auth import get_principal
from coachbook.database import get_db
from coachbook.deps import (
    get_availability_cache,
    get_booking_service,
    get_calendar,
    get_compensation_queue,
    get_ledger,
    get_today,
)
from tests.helpers import MONDAY, TODAY, TOMORROW, local, principal_for, purchase

app = main.app


@pytest.fixture
def user(make_user):
    return make_user([purchase("p30", duration=30, total=2), purchase("p60", duration=60, total=1)])


@pytest.fixture
def overrides(db, templates, service, cache, ledger, calendar, queue, user):
    app.dependency_overrides.update({
        get_db: lambda: db,
        get_principal: lambda: principal_for(user),
        get_booking_service: lambda: service,
        get_availability_cache: lambda: cache,
        get_ledger: lambda: ledger,
        get_today: lambda: TODAY,
        get_calendar: lambda: calendar,
        get_compensation_queue: lambda: queue,
    })
    yield app.dependency_overrides
    app.dependency_overrides.clear()


@pytest.fixture
def client(overrides) -> TestClient:
    return TestClient(app)


class TestAvailabilityApi:
    def test_second_read_is_cached(self, client) -> None:
        first = client.get("/availability", params={"date": MONDAY.isoformat()})
        second = client.get("/availability", params={"date": MONDAY.isoformat()})

        assert first.status_code == 200
        body = first.json()
        assert body["date"] == "2026-06-08"
        assert body["timezone"] == "America/Chicago"
        assert body["slots"][0] == {"time": "09:00", "can_book_30": True, "can_book_60": True}
        assert body["cached"] is False
        assert second.json()["cached"] is True

    def test_invalid_date(self, client) -> None:
        response = client.get("/availability", params={"date": "06/08/2026"})

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "code": "INVALID_DATE",
            "error": "Valid date required (YYYY-MM-DD).",
        }

    def test_range(self, client, calendar) -> None:
        response = client.get("/availability/range", params={"dates": f"{MONDAY},{TOMORROW}"})

        assert response.status_code == 200
        assert set(response.json()["availability"]) == {"2026-06-08", "2026-06-04"}
        assert len(calendar.list_busy_calls) == 1

    @pytest.mark.parametrize("offset", [0, -3, 29])
    def test_date_outside_horizon_has_no_slots(self, client, calendar, offset) -> None:
        day = TODAY + timedelta(days=offset)

        response = client.get("/availability", params={"date": day.isoformat()})

        assert response.status_code == 200
        assert response.json()["slots"] == []
        assert calendar.list_busy_calls == []

    def test_wide_range_queries_only_horizon_days(self, client, calendar) -> None:
        response = client.get("/availability/range", params={"dates": "2026-06-04,2096-06-04"})

        body = response.json()["availability"]
        assert body["2096-06-04"]["slots"] == []
        assert body["2026-06-04"]["slots"]
        assert len(calendar.list_busy_calls) == 1
        _, time_min, time_max = calendar.list_busy_calls[0]
        assert time_max - time_min == timedelta(days=1)

    def test_empty_range_rejected(self, client) -> None:
        response = client.get("/availability/range", params={"dates": " , "})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_preload_and_refresh(self, client) -> None:
        preload = client.post("/availability/preload")

        assert preload.status_code == 200
        assert preload.json() == {"days_loaded": 28, "expires_in": 900}

        refresh = client.post("/availability/refresh", params={"date": MONDAY.isoformat()})
        assert refresh.status_code == 200
        assert refresh.json()["cached"] is False


class TestBookingsApi:
    def test_commit_then_cancel(self, client, calendar) -> None:
        response = client.post("/bookings/commit", json={
            "date": MONDAY.isoformat(),
            "time": "10:00",
            "duration": 60,
            "idempotency_key": "req-1",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["duplicate"] is False
        assert body["booking"]["status"] == "confirmed"
        assert body["booking"]["duration"] == 60
        assert body["event_url"]
        booking_id = body["booking"]["id"]

        status = client.get("/bookings/status", params={"date": MONDAY.isoformat(), "time": "10:00"})
        assert status.json()["booked"] is True

        cancelled = client.post(f"/bookings/{booking_id}/cancel")
        assert cancelled.status_code == 200
        assert cancelled.json()["booking"]["status"] == "cancelled"
        assert client.get("/credits").json() == {"by_duration": {"30": 2, "60": 1}}

        listed = client.get("/bookings").json()["bookings"]
        assert [b["id"] for b in listed] == [booking_id]

    def test_domain_error_envelope(self, client) -> None:
        response = client.post("/bookings/commit", json={
            "date": TODAY.isoformat(),
            "time": "10:00",
            "duration": 30,
        })

        assert response.status_code == 400
        assert response.json()["code"] == "SAME_DAY_BOOKING"
        assert response.json()["success"] is False

    def test_slot_taken_is_conflict(self, client, calendar) -> None:
        calendar.add_busy("primary", local(MONDAY, "09:30"), local(MONDAY, "10:00"))

        response = client.post("/bookings/commit", json={
            "date": MONDAY.isoformat(),
            "time": "09:00",
            "duration": 60,
        })

        assert response.status_code == 409
        assert response.json()["code"] == "SLOT_UNAVAILABLE"

    def test_missing_field_is_validation_error(self, client) -> None:
        response = client.post("/bookings/commit", json={"date": MONDAY.isoformat(), "time": "10:00"})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert "duration" in response.json()["error"]

    def test_unauthenticated(self, client, overrides) -> None:
        del overrides[get_principal]

        response = client.post("/bookings/commit", json={
            "date": MONDAY.isoformat(),
            "time": "10:00",
            "duration": 30,
        })

        assert response.status_code == 401
        assert response.json()["code"] == "NOT_AUTHENTICATED"

    def test_session_cookie_resolves_principal(self, client, overrides, monkeypatch) -> None:
        del overrides[get_principal]
        sessions = {"session:tok-1": json.dumps({"sub": "google-1", "email": "client1@example.com"})}
        monkeypatch.setattr(auth.redis_client, "get", sessions.get)
        client.cookies.set("session", "tok-1")

        response = client.get("/credits")

        assert response.status_code == 200
        assert response.json() == {"by_duration": {"30": 2, "60": 1}}


class TestInternalApi:
    def test_grant_is_idempotent(self, client, user) -> None:
        payload = {
            "email": user.email,
            "payment_id": "pi_42",
            "duration": 30,
            "sessions": 3,
            "package_id": "pack-3",
        }

        first = client.post("/internal/credits/grant", json=payload)
        again = client.post("/internal/credits/grant", json=payload)

        assert first.status_code == 200
        assert first.json()["created"] is True
        assert first.json()["purchase"]["sessions_total"] == 3
        assert again.json()["created"] is False
        assert again.json()["purchase"]["id"] == first.json()["purchase"]["id"]
        assert client.get("/credits").json()["by_duration"]["30"] == 5

    def test_grant_unknown_user(self, client) -> None:
        response = client.post("/internal/credits/grant", json={
            "email": "nobody@example.com",
            "payment_id": "pi_1",
            "duration": 30,
            "sessions": 1,
        })

        assert response.status_code == 404
        assert response.json()["code"] == "USER_NOT_FOUND"

    def test_token_required_when_configured(self, client, monkeypatch) -> None:
        monkeypatch.setattr(main.settings, "internal_api_token", "s3cret")

        denied = client.post("/internal/compensations/replay")
        allowed = client.post("/internal/compensations/replay", headers={"X-Internal-Token": "s3cret"})

        assert denied.status_code == 403
        assert denied.json()["code"] == "FORBIDDEN"
        assert allowed.status_code == 200
        assert allowed.json() == {"replayed": 0, "remaining": 0}


class TestServiceHealth:
    def test_health_reports_redis(self, client, monkeypatch) -> None:
        monkeypatch.setattr(main.redis_client, "ping", lambda: True)

        assert client.get("/health").json() == {"redis": True}

    def test_health_redis_down(self, client, monkeypatch) -> None:
        def down():
            raise RedisConnectionError("refused")

        monkeypatch.setattr(main.redis_client, "ping", down)

        response = client.get("/health")

        assert response.status_code == 503

    def test_unexpected_error_is_generic_500(self, overrides) -> None:
        broken = MagicMock()
        broken.credits.side_effect = RuntimeError("database exploded")
        overrides[get_ledger] = lambda: broken

        response = TestClient(app, raise_server_exceptions=False).get("/credits")

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "code": "INTERNAL_ERROR",
            "error": "Something went wrong. Please try again.",
        }
