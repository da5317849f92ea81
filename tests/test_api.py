from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from src.api.config import ServiceSettings
from src.api.main import create_app
from src.integrations.event_store import InMemoryEventStore


@pytest.fixture
def client() -> TestClient:
    settings = ServiceSettings(start_hour=7, end_hour=19, zoom_level=1.0, max_window_days=60)
    return TestClient(create_app(store=InMemoryEventStore(), settings=settings))


def _payload(**overrides) -> dict[str, object]:
    payload: dict[str, object] = {
        "title": "Algebra",
        "start_time": "2024-01-01T09:00:00",
        "end_time": "2024-01-01T10:00:00",
        "resource_id": "T",
        "schedule_id": "s1",
    }
    payload.update(overrides)
    return payload


def test_create_and_fetch_event(client: TestClient) -> None:
    response = client.post("/api/events", json=_payload(event_id="e1"))

    assert response.status_code == 201
    body = client.get("/api/events/e1").json()
    assert body["title"] == "Algebra"
    assert body["status"] == "active"
    assert body["is_recurring"] is False


def test_double_booking_is_rejected(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    client.post("/api/events", json=_payload(event_id="e1"))

    overlapping = client.post(
        "/api/events",
        json=_payload(event_id="e2", start_time="2024-01-01T09:30:00", end_time="2024-01-01T09:45:00"),
    )
    touching = client.post(
        "/api/events",
        json=_payload(event_id="e3", start_time="2024-01-01T10:00:00", end_time="2024-01-01T11:00:00"),
    )

    assert overlapping.status_code == 409
    assert overlapping.json()["detail"]["resource_conflicts"] == ["e1"]
    assert touching.status_code == 201
    assert any("Rejected booking" in record.message for record in caplog.records)


def test_substitute_conflict_is_reported(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="e1", resource_id="S"))

    response = client.post("/api/events", json=_payload(event_id="e2", substitute_id="S"))

    assert response.status_code == 409
    assert response.json()["detail"]["substitute_conflicts"] == ["e1"]
    assert response.json()["detail"]["resource_conflicts"] == []


def test_update_ignores_the_event_itself(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="e1"))

    response = client.put(
        "/api/events/e1",
        json=_payload(start_time="2024-01-01T09:30:00", end_time="2024-01-01T10:30:00"),
    )

    assert response.status_code == 200
    assert response.json()["start_time"] == "2024-01-01T09:30:00"


def test_cancelled_event_frees_the_slot(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="e1"))

    cancelled = client.delete("/api/events/e1")
    rebooked = client.post("/api/events", json=_payload(event_id="e2"))

    assert cancelled.json()["status"] == "cancelled"
    assert rebooked.status_code == 201


def test_invalid_ranges_and_rules(client: TestClient) -> None:
    inverted = client.post("/api/events", json=_payload(end_time="2024-01-01T08:00:00"))
    both_end_conditions = client.post(
        "/api/events",
        json=_payload(recurrence={"frequency": "daily", "count": 3, "ends_on": "2024-02-01"}),
    )
    zero_interval = client.post("/api/events", json=_payload(recurrence={"frequency": "daily", "interval": 0}))

    assert inverted.status_code == 422
    assert both_end_conditions.status_code == 400
    assert zero_interval.status_code == 422
    assert client.get("/api/events/missing").status_code == 404


def test_occurrences_and_detach(client: TestClient) -> None:
    client.post(
        "/api/events",
        json=_payload(
            event_id="series",
            recurrence={"frequency": "weekly", "days_of_week": [1, 3, 5], "exceptions": ["2024-01-10"]},
        ),
    )

    occurrences = client.get(
        "/api/events/series/occurrences",
        params={"window_start": "2024-01-01", "window_end": "2024-01-14"},
    ).json()
    assert [item["occurrence_date"] for item in occurrences] == [
        "2024-01-01",
        "2024-01-03",
        "2024-01-05",
        "2024-01-08",
        "2024-01-12",
    ]

    detached = client.post(
        "/api/events/series/occurrences/2024-01-03/detach",
        json={"new_event_id": "moved", "start_time": "2024-01-03T13:00:00", "end_time": "2024-01-03T14:00:00"},
    )
    assert detached.status_code == 201
    assert detached.json()["detached"]["parent_event_id"] == "series"
    assert "2024-01-03" in detached.json()["series"]["recurrence"]["exceptions"]

    remaining = client.get(
        "/api/events/series/occurrences",
        params={"window_start": "2024-01-01", "window_end": "2024-01-07"},
    ).json()
    assert [item["occurrence_date"] for item in remaining] == ["2024-01-01", "2024-01-05"]

    missing = client.post("/api/events/series/occurrences/2024-01-02/detach", json={})
    assert missing.status_code == 404


def test_recurring_series_blocks_later_bookings(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="series", recurrence={"frequency": "daily"}))

    response = client.post(
        "/api/availability",
        json={"resource_id": "T", "start_time": "2024-01-09T09:30:00", "end_time": "2024-01-09T10:30:00"},
    )

    assert response.json() == {
        "resource_id": "T",
        "conflict": True,
        "conflicting_event_ids": ["series:2024-01-09"],
    }


def test_occurrence_window_is_bounded(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="series", recurrence={"frequency": "daily"}))

    response = client.get(
        "/api/events/series/occurrences",
        params={"window_start": "2024-01-01", "window_end": "2025-01-01"},
    )

    assert response.status_code == 400


def test_layout_packs_overlapping_events(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="a", resource_id="T1"))
    client.post(
        "/api/events",
        json=_payload(event_id="b", resource_id="T2", start_time="2024-01-01T09:30:00", end_time="2024-01-01T10:30:00"),
    )
    client.post(
        "/api/events",
        json=_payload(event_id="c", resource_id="T3", start_time="2024-01-01T10:00:00", end_time="2024-01-01T11:00:00"),
    )

    body = client.get("/api/schedules/s1/layout", params={"day": "2024-01-01"}).json()

    assert body["scale"] == "15minutes"
    layout = {item["event_id"]: item for item in body["events"]}
    assert layout["a"]["column"] == 0
    assert layout["b"]["column"] == 1
    assert layout["c"]["column"] == 0
    assert layout["a"]["top_pixels"] == 480
    assert layout["b"]["width_percent"] == 50


def test_grid_endpoints(client: TestClient) -> None:
    grid = client.get(
        "/api/grid", params={"day": "2024-01-01", "start_hour": 7, "end_hour": 9, "zoom_level": 0.5}
    ).json()

    assert grid["scale"] == "30minutes"
    assert grid["time_slots"] == [
        "2024-01-01T07:00:00",
        "2024-01-01T07:30:00",
        "2024-01-01T08:00:00",
        "2024-01-01T08:30:00",
        "2024-01-01T09:00:00",
    ]

    position = client.post(
        "/api/grid/position",
        json={"day": "2024-01-01", "pixel_y": 483, "container_height": 2000, "pixel_x": 350, "container_width": 400, "column_count": 2},
    ).json()

    assert position["time"] == "2024-01-01T09:00:00"
    assert position["column"] == 1
    assert position["is_snapped"] is True


def test_settings_from_env(caplog: pytest.LogCaptureFixture) -> None:
    settings = ServiceSettings.from_env(
        {"SCHEDULER_START_HOUR": "8", "SCHEDULER_ZOOM_LEVEL": "wide", "SCHEDULER_LOG_LEVEL": "debug"}
    )

    assert settings.start_hour == 8
    assert settings.zoom_level == 1.5
    assert settings.log_level == "DEBUG"
    assert any("SCHEDULER_ZOOM_LEVEL" in record.message for record in caplog.records)


def test_series_booked_after_a_single_lesson_is_rejected(client: TestClient) -> None:
    client.post(
        "/api/events",
        json=_payload(event_id="single", start_time="2024-01-08T09:00:00", end_time="2024-01-08T10:00:00"),
    )

    response = client.post(
        "/api/events",
        json=_payload(event_id="series", recurrence={"frequency": "weekly", "days_of_week": [1]}),
    )

    assert response.status_code == 409
    assert response.json()["detail"]["resource_conflicts"] == ["single"]
    assert client.get("/api/events/series").status_code == 404


def test_offset_timestamps_mix_with_naive_ones(client: TestClient) -> None:
    created = client.post(
        "/api/events",
        json=_payload(event_id="utc", start_time="2024-01-01T09:00:00Z", end_time="2024-01-01T10:00:00Z"),
    )

    availability = client.post(
        "/api/availability",
        json={"resource_id": "T", "start_time": "2024-01-01T09:30:00", "end_time": "2024-01-01T10:30:00"},
    )
    layout = client.get("/api/schedules/s1/layout", params={"day": "2024-01-01"})

    assert created.status_code == 201
    assert created.json()["start_time"] == "2024-01-01T09:00:00"
    assert availability.json()["conflicting_event_ids"] == ["utc"]
    assert layout.status_code == 200
    assert layout.json()["events"][0]["top_pixels"] == 480


def test_detached_copy_cannot_land_on_a_sibling_occurrence(client: TestClient) -> None:
    client.post(
        "/api/events",
        json=_payload(event_id="series", recurrence={"frequency": "weekly", "days_of_week": [1, 3]}),
    )

    moved_onto_wednesday = client.post(
        "/api/events/series/occurrences/2024-01-01/detach",
        json={"new_event_id": "moved", "start_time": "2024-01-03T09:30:00", "end_time": "2024-01-03T10:30:00"},
    )
    kept_in_place = client.post(
        "/api/events/series/occurrences/2024-01-01/detach",
        json={"new_event_id": "kept", "title": "Algebra revision"},
    )

    assert moved_onto_wednesday.status_code == 409
    assert moved_onto_wednesday.json()["detail"]["resource_conflicts"] == ["series:2024-01-03"]
    assert kept_in_place.status_code == 201


def test_cancelled_events_cannot_be_edited(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="e1"))
    client.delete("/api/events/e1")

    response = client.put("/api/events/e1", json=_payload(title="Geometry"))

    assert response.status_code == 409
    assert client.get("/api/events/e1").json()["status"] == "cancelled"


def test_assign_substitute_checks_the_substitute(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="e1"))
    client.post("/api/events", json=_payload(event_id="e2", resource_id="S"))

    busy = client.post("/api/events/e1/substitute", json={"substitute_id": "S", "reason": "Illness"})
    assigned = client.post("/api/events/e1/substitute", json={"substitute_id": "U", "reason": "Illness"})

    assert busy.status_code == 409
    assert busy.json()["detail"]["substitute_conflicts"] == ["e2"]
    assert assigned.status_code == 200
    assert assigned.json()["substitute_id"] == "U"
    assert assigned.json()["substitution_reason"] == "Illness"


def test_resource_schedule_lists_taught_and_covered_lessons(client: TestClient) -> None:
    client.post("/api/events", json=_payload(event_id="series", recurrence={"frequency": "daily", "count": 3}))
    client.post(
        "/api/events",
        json=_payload(
            event_id="covered",
            resource_id="U",
            substitute_id="T",
            start_time="2024-01-02T11:00:00",
            end_time="2024-01-02T12:00:00",
        ),
    )

    response = client.get(
        "/api/resources/T/events", params={"window_start": "2024-01-01", "window_end": "2024-01-02"}
    )

    assert [item["event_id"] for item in response.json()] == [
        "series:2024-01-01",
        "series:2024-01-02",
        "covered",
    ]


def test_settings_fall_back_on_unusable_values(caplog: pytest.LogCaptureFixture) -> None:
    settings = ServiceSettings.from_env(
        {
            "SCHEDULER_START_HOUR": "20",
            "SCHEDULER_END_HOUR": "8",
            "SCHEDULER_ZOOM_LEVEL": "9",
            "SCHEDULER_LOG_LEVEL": "verbose",
        }
    )

    assert (settings.start_hour, settings.end_hour) == (7, 19)
    assert settings.zoom_level == 1.5
    assert settings.log_level == "INFO"
    assert any("SCHEDULER_LOG_LEVEL" in record.message for record in caplog.records)
    assert TestClient(create_app(store=InMemoryEventStore(), settings=settings)).get("/api/grid").status_code == 200
