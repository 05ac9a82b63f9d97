"""
Tests for Schedules and Doses API
==================================

Tests dose generation, the today view, repair and dose actions.
Requests run against the real clock, so dose actions target the last
generated dose, which is always still ahead.
"""

import pytest
from datetime import date, datetime, timedelta
from fastapi import status
from fastapi.testclient import TestClient

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


# ==================== FIXTURES ====================

@pytest.fixture
def medication(client: TestClient, test_patient):
    """Once-daily medication at 08:00 created through the API"""
    response = client.post("/api/v1/medications/", json={
        "patient_id": test_patient.id,
        "name": "Lisinopril",
        "dosage": "10mg",
        "frequency": "Once daily",
    })
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


@pytest.fixture
def week(client: TestClient, medication):
    """Today through six days ahead, generated"""
    today = date.today()
    response = client.post("/api/v1/schedules/generate", json={
        "medication_id": medication["id"],
        "range_start": today.isoformat(),
        "range_end": (today + timedelta(days=6)).isoformat(),
    })
    assert response.status_code == status.HTTP_200_OK
    return response.json()


@pytest.fixture
def last_dose(week):
    return week["events"][-1]


@pytest.fixture
def second_to_last_dose(week):
    return week["events"][-2]


# ==================== GENERATION TESTS ====================

class TestGenerateSchedule:
    """Tests for dose event generation"""

    @pytest.mark.api
    def test_generate_week(self, week):
        """Test one dose a day for seven days"""
        assert week["total"] == 7
        assert len({e["scheduled_at"][:10] for e in week["events"]}) == 7
        assert all(e["scheduled_at"].endswith("08:00:00") for e in week["events"])

    @pytest.mark.api
    def test_generate_is_idempotent(self, client: TestClient, medication, week):
        """Test that generating the same range twice returns the same events"""
        again = client.post("/api/v1/schedules/generate", json={
            "medication_id": medication["id"],
            "range_start": week["range_start"],
            "range_end": week["range_end"],
        }).json()

        assert [e["id"] for e in again["events"]] == [e["id"] for e in week["events"]]

    @pytest.mark.api
    def test_generate_with_new_times(self, client: TestClient, medication, week):
        """Test that passing times changes the schedule"""
        client.post("/api/v1/schedules/generate", json={
            "medication_id": medication["id"],
            "range_start": week["range_start"],
            "range_end": week["range_end"],
            "times": ["21:00"],
        })

        view = client.get(f"/api/v1/schedules/medication/{medication['id']}").json()

        assert view["schedules"][0]["times"] == ["21:00"]
        assert view["events"][-1]["scheduled_at"].endswith("21:00:00")

    @pytest.mark.api
    def test_generate_reversed_range(self, client: TestClient, medication):
        """Test that range_end must not precede range_start"""
        response = client.post("/api/v1/schedules/generate", json={
            "medication_id": medication["id"],
            "range_start": "2025-03-31",
            "range_end": "2025-03-01",
        })

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["code"] == "validation_error"

    @pytest.mark.api
    def test_generate_unknown_medication(self, client: TestClient):
        """Test generating for a missing medication"""
        response = client.post("/api/v1/schedules/generate", json={
            "medication_id": "missing",
            "range_start": "2025-03-01",
            "range_end": "2025-03-07",
        })

        assert response.status_code == status.HTTP_404_NOT_FOUND


# ==================== VIEW TESTS ====================

class TestScheduleViews:
    """Tests for the medication schedule view, today view and repair"""

    @pytest.mark.api
    def test_medication_schedule_view(self, client: TestClient, medication, week):
        """Test schedules and events of a medication"""
        end = (date.today() + timedelta(days=6)).isoformat()

        view = client.get(
            f"/api/v1/schedules/medication/{medication['id']}?start_date={end}&end_date={end}"
        ).json()

        assert view["schedules"][0]["frequency"] == "daily"
        assert view["schedules"][0]["times"] == ["08:00"]
        assert [e["id"] for e in view["events"]] == [week["events"][-1]["id"]]

    @pytest.mark.api
    def test_today_view(self, client: TestClient, test_patient, week):
        """Test today's doses grouped into the patient's buckets"""
        response = client.get(f"/api/v1/schedules/patient/{test_patient.id}/today")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["date"] == date.today().isoformat()
        assert [b["name"] for b in data["buckets"]] == ["morning", "lunch", "evening", "before_bed"]
        assert len(data["buckets"][0]["events"]) == 1

    @pytest.mark.api
    def test_today_view_unknown_patient(self, client: TestClient):
        """Test the today view of a missing patient"""
        response = client.get("/api/v1/schedules/patient/missing/today")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.api
    def test_repair_dry_run(self, client: TestClient, test_patient, week):
        """Test that a healthy schedule reports nothing to repair"""
        response = client.post(f"/api/v1/schedules/patient/{test_patient.id}/repair?dry_run=true")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["dry_run"] is True
        assert data["issues_found"] == 0


# ==================== DOSE ACTION TESTS ====================

class TestDoseActions:
    """Tests for take, skip, snooze and reschedule"""

    @pytest.mark.api
    def test_get_dose(self, client: TestClient, last_dose):
        """Test getting a dose with its derived status"""
        response = client.get(f"/api/v1/doses/{last_dose['id']}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "scheduled"

    @pytest.mark.api
    def test_get_dose_not_found(self, client: TestClient):
        """Test getting a missing dose"""
        response = client.get("/api/v1/doses/missing")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "not_found"

    @pytest.mark.api
    def test_take_dose(self, client: TestClient, last_dose):
        """Test taking a dose, and that taking it again changes nothing"""
        url = f"/api/v1/doses/{last_dose['id']}/take"

        first = client.post(url, json={"taken_by": "patient"})
        second = client.post(url, json={})

        assert first.status_code == status.HTTP_200_OK
        assert first.json()["status"] == "taken"
        assert second.json()["taken_at"] == first.json()["taken_at"]

    @pytest.mark.api
    def test_take_in_future(self, client: TestClient, last_dose):
        """Test that taken_at cannot be in the future"""
        future = (datetime.now() + timedelta(days=1)).isoformat()

        response = client.post(f"/api/v1/doses/{last_dose['id']}/take", json={"taken_at": future})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_skip_then_take_conflicts(self, client: TestClient, last_dose):
        """Test that a skipped dose cannot be taken"""
        skipped = client.post(
            f"/api/v1/doses/{last_dose['id']}/skip",
            json={"reason": "side_effects", "notes": "dizzy"}
        )
        taken = client.post(f"/api/v1/doses/{last_dose['id']}/take", json={})

        assert skipped.json()["status"] == "skipped"
        assert skipped.json()["skip_reason"] == "side_effects"
        assert taken.status_code == status.HTTP_409_CONFLICT
        assert taken.json()["context"]["current_status"] == "skipped"

    @pytest.mark.api
    def test_skip_unknown_reason(self, client: TestClient, last_dose):
        """Test that skip reasons are a closed set"""
        response = client.post(f"/api/v1/doses/{last_dose['id']}/skip", json={"reason": "bored"})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_snooze_keeps_dose_scheduled(self, client: TestClient, last_dose):
        """Test that snoozing shifts the due time and keeps the status"""
        url = f"/api/v1/doses/{last_dose['id']}/snooze"
        for _ in range(3):
            response = client.post(url, json={"minutes": 10})

        data = response.json()
        assert data["status"] == "scheduled"
        assert data["snooze_count"] == 3
        assert data["effective_due_at"].endswith("08:30:00")
        assert len(data["snooze_history"]) == 3

    @pytest.mark.api
    def test_snooze_zero_minutes(self, client: TestClient, last_dose):
        """Test that snooze minutes must be positive"""
        response = client.post(f"/api/v1/doses/{last_dose['id']}/snooze", json={"minutes": 0})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_reschedule_one_time(self, client: TestClient, last_dose):
        """Test moving one dose"""
        new_time = last_dose["scheduled_at"][:10] + "T10:00:00"

        response = client.post(
            f"/api/v1/doses/{last_dose['id']}/reschedule",
            json={"new_time": new_time, "reason": "Lab work"}
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["original"]["status"] == "rescheduled"
        assert data["replacement"]["scheduled_at"] == new_time
        assert data["replacement"]["rescheduled_from_id"] == last_dose["id"]

    @pytest.mark.api
    def test_reschedule_recurring(self, client: TestClient, medication, second_to_last_dose):
        """Test moving a dose and every later one to a new time of day"""
        new_time = second_to_last_dose["scheduled_at"][:10] + "T09:00:00"

        response = client.post(
            f"/api/v1/doses/{second_to_last_dose['id']}/reschedule",
            json={"new_time": new_time, "reason": "Breakfast moved", "is_one_time": False}
        )
        view = client.get(f"/api/v1/schedules/medication/{medication['id']}").json()

        assert response.status_code == status.HTTP_200_OK
        assert view["schedules"][0]["times"] == ["09:00"]
        assert view["events"][-1]["scheduled_at"].endswith("09:00:00")
        assert view["events"][-1]["status"] == "scheduled"

    @pytest.mark.api
    def test_reschedule_into_past(self, client: TestClient, last_dose):
        """Test that a dose cannot move into the past"""
        past = (datetime.now() - timedelta(hours=1)).isoformat()

        response = client.post(
            f"/api/v1/doses/{last_dose['id']}/reschedule",
            json={"new_time": past, "reason": "oops"}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_dose_bucket(self, client: TestClient, last_dose):
        """Test bucket classification of a dose"""
        data = client.get(f"/api/v1/doses/{last_dose['id']}/bucket").json()

        assert data["bucket"] == "morning"
        assert data["label"] == "Morning"
        assert data["minutes_until_due"] > 0


# ==================== HEALTH TESTS ====================

class TestHealth:
    """Tests for the health endpoints"""

    @pytest.mark.api
    def test_root(self, client: TestClient):
        response = client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    @pytest.mark.api
    def test_health_reports_scheduling_config(self, client: TestClient):
        data = client.get("/health").json()

        assert data["checks"]["database"]["type"] == "sqlite"
        assert data["config"]["missed_grace_minutes"] == 120
        assert data["config"]["time_buckets"] == ["morning", "lunch", "evening", "before_bed"]
