"""Shared pytest fixtures."""

import json
import os
import shutil
import tempfile
from pathlib import Path

import pytest

# Point the service at a throwaway database and upload tree before anything
# reads the settings.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="soukhya-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_ROOT / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TEST_ROOT / "uploads")
os.environ["REQUIRE_AUTH"] = "false"

from fastapi.testclient import TestClient  # noqa: E402

from main import app  # noqa: E402
from soukhya.config import settings  # noqa: E402
from soukhya.database import Category, Disease, System, db_manager  # noqa: E402

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
PDF_BYTES = b"%PDF-1.4\n%test\n"


def pytest_sessionfinish(session, exitstatus):
    db_manager.close()
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


def _seed_reference_data(session):
    session.add_all([
        System(id=1, name="Cardiovascular"),
        System(id=2, name="Endocrine"),
    ])
    session.add_all([
        Category(id=1, name="Heart rhythm", system_id=1),
        Category(id=2, name="Vascular", system_id=1),
        Category(id=3, name="Thyroid", system_id=2),
    ])
    session.add_all([
        Disease(id=1, code="I48", name="Atrial fibrillation", category_id=1),
        Disease(id=2, code="I47", name="Tachycardia", category_id=1),
        Disease(id=3, code="I10", name="Hypertension", category_id=2),
        Disease(id=4, code="I83", name="Varicose veins", category_id=2),
        Disease(id=5, code="E03", name="Hypothyroidism", category_id=3),
        Disease(id=6, code="E05", name="Hyperthyroidism", category_id=3),
    ])
    session.commit()


@pytest.fixture
def database():
    """Fresh schema, seeded reference data and an empty upload tree per test."""
    db_manager.close()
    db_file = _TEST_ROOT / "test.db"
    if db_file.exists():
        db_file.unlink()
    shutil.rmtree(settings.UPLOAD_DIR, ignore_errors=True)
    settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

    db_manager.init_db(settings.DATABASE_URL)
    session = db_manager.get_session()
    try:
        _seed_reference_data(session)
    finally:
        session.close()

    yield db_manager
    db_manager.close()


@pytest.fixture
def db_session(database):
    session = database.get_session()
    yield session
    session.close()


@pytest.fixture
def client(database):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def upload_root():
    return settings.UPLOAD_DIR.resolve()


@pytest.fixture
def patient_payload():
    """A complete intake: two caretakers, insurance with two hospitals, three
    questions, all four habits and two disease selections."""
    return {
        "patient": {
            "name": "Jane",
            "lname": "Doe",
            "gender": "female",
            "dob": "15/08/1990",
            "phone": "5550100",
            "email": "jane@example.com",
            "rcity": "Pune",
            "addressTextProof": "Passport",
        },
        "caretakers": [
            {"name": "John Doe", "relation": "spouse", "phone": "5550101"},
            {"name": "Mary Doe", "relation": "mother", "email": "mary@example.com"},
        ],
        "insurance": {
            "insuranceCompany": "Acme Health",
            "periodInsurance": "2024-2025",
            "sumInsured": 500000,
            "package": "gold",
            "hospitals": [
                {"hospitalName": "City Hospital", "hospitalAddress": "1 Main St"},
                {"hospitalName": "County Clinic", "hospitalAddress": "2 Oak Ave"},
            ],
        },
        "questions": {
            "q1": {"answer": "yes", "details": "since 2010"},
            "q2": {"answer": "no"},
            "q3": "sometimes",
        },
        "habits": {
            "tobacco": "no",
            "smoking": "yes",
            "smokingYears": 5,
            "alcohol": "occasionally",
            "alcoholYears": 10,
            "drugs": "no",
        },
        "selectedDiseases": [
            {"disease_id": 1, "patient_data": {"onset": "2015"}},
            {"disease_id": 5},
        ],
    }


@pytest.fixture
def create_patient(client):
    """Create a patient through the API and return its id."""
    def _create(payload, files=None):
        if files:
            data = {key: json.dumps(value) for key, value in payload.items()}
            response = client.post("/api/patients", data=data, files=files)
        else:
            response = client.post("/api/patients", json=payload)
        assert response.status_code == 201, response.text
        return response.json()["patient_id"]
    return _create
