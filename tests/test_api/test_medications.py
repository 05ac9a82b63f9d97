"""
Tests for Medications API
==========================

Tests medication creation, frequency normalization, lifecycle transitions
and as-needed intake.
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
def medication_create_data(test_patient):
    """Sample data for creating a medication"""
    return {
        "patient_id": test_patient.id,
        "name": "Metformin",
        "dosage": "500mg",
        "frequency": "Twice daily",
        "instructions": "Take with meals",
    }


@pytest.fixture
def created_medication(client: TestClient, medication_create_data):
    """Medication created through the API"""
    response = client.post("/api/v1/medications/", json=medication_create_data)
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


@pytest.fixture
def prn_medication_data(test_patient):
    return {
        "patient_id": test_patient.id,
        "name": "Acetaminophen",
        "dosage": "500mg",
        "frequency": "as needed",
        "max_daily_dose": 2,
    }


def change_status(client, medication_id, change_type, **payload):
    return client.post(
        f"/api/v1/medications/{medication_id}/status",
        json={"change_type": change_type, "payload": payload, "performed_by": "dr_chen"}
    )


# ==================== CREATE TESTS ====================

class TestCreateMedication:
    """Tests for medication creation endpoint"""

    @pytest.mark.api
    def test_create_medication_success(self, client: TestClient, created_medication):
        """Test successful medication creation"""
        assert created_medication["name"] == "Metformin"
        assert created_medication["frequency"] == "Twice daily"
        assert created_medication["frequency_code"] == "twice_daily"
        assert created_medication["current_status"] == "active"
        assert created_medication["is_prn"] is False

    @pytest.mark.api
    def test_create_medication_abbreviation(self, client: TestClient, medication_create_data):
        """Test that clinical abbreviations are normalized"""
        medication_create_data["frequency"] = "TID"

        response = client.post("/api/v1/medications/", json=medication_create_data)

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["frequency_code"] == "three_times_daily"

    @pytest.mark.api
    def test_create_medication_unknown_patient(self, client: TestClient, medication_create_data):
        """Test creating a medication for a missing patient"""
        medication_create_data["patient_id"] = "missing"

        response = client.post("/api/v1/medications/", json=medication_create_data)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["code"] == "not_found"

    @pytest.mark.api
    def test_create_medication_missing_fields(self, client: TestClient, test_patient):
        """Test that name and dosage are required"""
        response = client.post("/api/v1/medications/", json={"patient_id": test_patient.id, "frequency": "daily"})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_create_prn_medication(self, client: TestClient, prn_medication_data):
        """Test that as-needed medications get no schedule"""
        response = client.post("/api/v1/medications/", json=prn_medication_data)

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["is_prn"] is True
        assert data["frequency_code"] == "as_needed"

        schedule = client.get(f"/api/v1/schedules/medication/{data['id']}").json()
        assert schedule["schedules"] == []
        assert schedule["events"] == []

    @pytest.mark.api
    def test_import_legacy_record(self, client: TestClient, test_patient):
        """Test importing a flat legacy record"""
        response = client.post("/api/v1/medications/import", json={
            "patient_id": test_patient.id,
            "record": {
                "record_type": "legacy",
                "name": "Levothyroxine",
                "dosage": "50mcg",
                "frequency": "once daily",
                "reminder_times": ["06:30"],
            },
        })

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["source_record_type"] == "legacy"

    @pytest.mark.api
    def test_import_unknown_record_type(self, client: TestClient, test_patient):
        """Test that the record type must be legacy or unified"""
        response = client.post("/api/v1/medications/import", json={
            "patient_id": test_patient.id,
            "record": {"record_type": "hl7", "name": "X"},
        })

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["context"]["errors"]


# ==================== NORMALIZATION TESTS ====================

class TestNormalizeFrequency:
    """Tests for the frequency normalization endpoint"""

    @pytest.mark.api
    @pytest.mark.parametrize("label,code,buckets", [
        ("Once daily", "daily", ["morning"]),
        ("bid", "twice_daily", ["morning", "evening"]),
        ("Every 6 hours", "four_times_daily", ["morning", "lunch", "evening", "before_bed"]),
        ("prn", "as_needed", []),
    ])
    def test_normalize(self, client: TestClient, label, code, buckets):
        """Test labels map to codes and bucket-aligned default times"""
        response = client.post("/api/v1/medications/normalize-frequency", json={"frequency": label})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["code"] == code
        assert data["recognized"] is True
        assert data["default_buckets"] == buckets

    @pytest.mark.api
    def test_normalize_unrecognized(self, client: TestClient):
        """Test that unknown text falls back to daily"""
        data = client.post("/api/v1/medications/normalize-frequency", json={"frequency": "sometimes"}).json()

        assert data["code"] == "daily"
        assert data["recognized"] is False

    @pytest.mark.api
    def test_normalize_with_patient_buckets(self, client: TestClient, test_patient):
        """Test that default times follow the patient's anchors"""
        client.put(
            f"/api/v1/patients/{test_patient.id}/time-buckets",
            json={"time_buckets": [
                {"name": "am", "label": "AM", "default_time": "06:00"},
                {"name": "pm", "label": "PM", "default_time": "20:00"},
            ]}
        )

        data = client.post(
            "/api/v1/medications/normalize-frequency",
            json={"frequency": "twice daily", "patient_id": test_patient.id}
        ).json()

        assert data["default_times"] == ["06:00", "20:00"]
        assert data["default_buckets"] == ["am", "pm"]


# ==================== READ TESTS ====================

class TestGetMedications:
    """Tests for medication retrieval"""

    @pytest.mark.api
    def test_get_medication(self, client: TestClient, created_medication):
        """Test getting medication by ID"""
        response = client.get(f"/api/v1/medications/{created_medication['id']}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["id"] == created_medication["id"]

    @pytest.mark.api
    def test_get_medication_not_found(self, client: TestClient):
        """Test getting non-existent medication returns 404"""
        response = client.get("/api/v1/medications/99999")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.api
    def test_list_patient_medications(self, client: TestClient, test_patient, created_medication):
        """Test listing a patient's active medications"""
        change_status(client, created_medication["id"], "discontinue", reason="done")
        client.post("/api/v1/medications/", json={
            "patient_id": test_patient.id, "name": "Aspirin", "dosage": "81mg", "frequency": "daily"
        })

        active = client.get(f"/api/v1/medications/patient/{test_patient.id}").json()
        everything = client.get(f"/api/v1/medications/patient/{test_patient.id}?active_only=false").json()

        assert [m["name"] for m in active["medications"]] == ["Aspirin"]
        assert everything["total"] == 2
        assert everything["active_count"] == 1


# ==================== LIFECYCLE TESTS ====================

class TestMedicationLifecycle:
    """Tests for hold, resume, discontinue and replace"""

    @pytest.mark.api
    def test_hold_and_resume(self, client: TestClient, created_medication):
        """Test a hold followed by a resume"""
        medication_id = created_medication["id"]
        hold_until = (date.today() + timedelta(days=2)).isoformat()

        held = change_status(client, medication_id, "hold", reason="Procedure", hold_until=hold_until)
        status_while_held = client.get(f"/api/v1/medications/{medication_id}/status").json()
        resumed = change_status(client, medication_id, "resume")
        history = client.get(f"/api/v1/medications/{medication_id}/status-history").json()

        assert held.status_code == status.HTTP_201_CREATED
        assert held.json()["payload"]["hold_until"] == hold_until
        assert status_while_held["status"] == "held"
        assert status_while_held["hold_until"] == hold_until
        assert resumed.status_code == status.HTTP_201_CREATED
        assert [h["change_type"] for h in history] == ["hold", "resume"]
        assert history[0]["performed_by"] == "dr_chen"

    @pytest.mark.api
    def test_generation_while_held_conflicts(self, client: TestClient, created_medication):
        """Test that a held medication refuses generation"""
        change_status(client, created_medication["id"], "hold", reason="Procedure")
        today = date.today()

        response = client.post("/api/v1/schedules/generate", json={
            "medication_id": created_medication["id"],
            "range_start": today.isoformat(),
            "range_end": (today + timedelta(days=6)).isoformat(),
        })

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["context"]["current_status"] == "held"

    @pytest.mark.api
    def test_resume_without_hold_conflicts(self, client: TestClient, created_medication):
        """Test that only a held medication can be resumed"""
        response = change_status(client, created_medication["id"], "resume")

        assert response.status_code == status.HTTP_409_CONFLICT
        data = response.json()
        assert data["code"] == "state_conflict"
        assert data["context"] == {"current_status": "active", "action": "resume"}

    @pytest.mark.api
    def test_discontinued_is_final(self, client: TestClient, created_medication):
        """Test that discontinued medications accept no further changes"""
        medication_id = created_medication["id"]
        assert change_status(client, medication_id, "discontinue", reason="Side effects").status_code == 201

        response = change_status(client, medication_id, "hold", reason="x")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert client.get(f"/api/v1/medications/{medication_id}").json()["is_active"] is False

    @pytest.mark.api
    def test_hold_without_reason(self, client: TestClient, created_medication):
        """Test that a hold needs a reason"""
        response = change_status(client, created_medication["id"], "hold")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["context"]["errors"][0]["field"] == "hold.reason"

    @pytest.mark.api
    def test_unknown_change_type(self, client: TestClient, created_medication):
        """Test that change_type is a closed set"""
        response = client.post(
            f"/api/v1/medications/{created_medication['id']}/status",
            json={"change_type": "pause", "payload": {"reason": "x"}}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_replace(self, client: TestClient, test_patient, created_medication):
        """Test replacing a medication with another of the same patient"""
        successor = client.post("/api/v1/medications/", json={
            "patient_id": test_patient.id, "name": "Glipizide", "dosage": "5mg", "frequency": "daily"
        }).json()

        response = change_status(
            client, created_medication["id"], "replace",
            reason="Switching therapy", new_medication_id=successor["id"], overlap_days=1
        )

        assert response.status_code == status.HTTP_201_CREATED
        current = client.get(f"/api/v1/medications/{created_medication['id']}/status").json()
        assert current["status"] == "replaced"


# ==================== PRN TESTS ====================

class TestPRNDoses:
    """Tests for as-needed intake logging"""

    @pytest.mark.api
    def test_log_until_limit(self, client: TestClient, prn_medication_data):
        """Test that the daily maximum is enforced"""
        medication = client.post("/api/v1/medications/", json=prn_medication_data).json()
        url = f"/api/v1/medications/{medication['id']}/prn-doses"
        earlier = (datetime.now() - timedelta(hours=3)).isoformat()

        first = client.post(url, json={"reason": "headache", "taken_at": earlier})
        second = client.post(url, json={"reason": "headache"})
        third = client.post(url, json={"reason": "headache"})

        assert first.status_code == status.HTTP_201_CREATED
        assert second.status_code == status.HTTP_201_CREATED
        assert third.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert third.json()["context"]["max_daily_dose"] == 2

        usage = client.get(f"/api/v1/medications/{medication['id']}/prn-usage").json()
        assert usage["doses_last_24h"] == 2
        assert usage["remaining_today"] == 0
        assert usage["common_reasons"] == [{"reason": "headache", "count": 2}]

    @pytest.mark.api
    def test_log_for_scheduled_medication(self, client: TestClient, created_medication):
        """Test that scheduled medications cannot log PRN doses"""
        response = client.post(
            f"/api/v1/medications/{created_medication['id']}/prn-doses",
            json={"reason": "pain"}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    @pytest.mark.api
    def test_log_unknown_reason(self, client: TestClient, prn_medication_data):
        """Test that the reason comes from the closed list"""
        medication = client.post("/api/v1/medications/", json=prn_medication_data).json()

        response = client.post(
            f"/api/v1/medications/{medication['id']}/prn-doses",
            json={"reason": "boredom"}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert "headache" in response.json()["context"]["allowed"]
