"""Tests for the patient routes."""

import json
import re
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import SQLAlchemyError

from soukhya.database import (
    AuditLog, Caretaker, Habit, InsuranceDetail, InsuranceHospital, Patient, PatientDisease,
    PatientFile, Question
)
from soukhya.services.patient_locks import patient_locks
from soukhya.services.patient_writer import PatientWriter
from tests.conftest import PDF_BYTES, PNG_BYTES


def stored_files(upload_root):
    return sorted(p for p in upload_root.rglob("*") if p.is_file())


def photo_upload(name="face.png"):
    return {"photo": (name, PNG_BYTES, "image/png")}


def all_attachments():
    return [
        ("photo", ("face.png", PNG_BYTES, "image/png")),
        ("proofFiles", ("id-front.png", PNG_BYTES, "image/png")),
        ("proofFiles", ("id-back.pdf", PDF_BYTES, "application/pdf")),
        ("policyFiles", ("policy.pdf", PDF_BYTES, "application/pdf")),
    ]


class TestCreateAndRead:
    """Tests for creating a patient and reading the profile back."""

    def test_round_trip(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.get(f"/api/patients/{patient_id}")
        assert response.status_code == 200
        profile = response.json()

        assert profile["id"] == patient_id
        assert profile["name"] == "Jane"
        assert profile["lname"] == "Doe"
        assert profile["dob"] == "1990-08-15"
        assert profile["addressTextProof"] == "Passport"
        assert profile["age"] is not None

        assert [c["name"] for c in profile["caretakers"]] == ["John Doe", "Mary Doe"]
        assert profile["caretakers"][0]["relation"] == "spouse"

        insurance = profile["insurance"]
        assert insurance["insuranceCompany"] == "Acme Health"
        assert insurance["sumInsured"] == "500000"
        assert [h["hospitalName"] for h in insurance["hospitals"]] == ["City Hospital", "County Clinic"]

        assert profile["questions"] == {
            "q1": {"answer": "yes", "details": "since 2010"},
            "q2": {"answer": "no", "details": None},
            "q3": {"answer": "sometimes", "details": None},
        }
        assert profile["habits"] == {
            "tobacco": "no", "tobaccoYears": None,
            "smoking": "yes", "smokingYears": 5,
            "alcohol": "occasionally", "alcoholYears": 10,
            "drugs": "no", "drugsYears": None,
        }

        diseases = profile["selectedDiseases"]
        assert [d["disease_id"] for d in diseases] == [1, 5]
        assert diseases[0]["patient_data"] == {"onset": "2015"}
        assert diseases[1]["patient_data"] is None
        assert diseases[1]["system_name"] == "Endocrine"

        assert profile["files"] == {"photo": None, "proof": [], "policy": []}

    def test_create_returns_201(self, client, patient_payload):
        response = client.post("/api/patients", json=patient_payload)
        assert response.status_code == 201
        assert response.json()["message"] == "Patient created successfully"

    def test_create_requires_last_name(self, client):
        response = client.post("/api/patients", json={"patient": {"name": "Jane"}})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_create_requires_patient(self, client):
        response = client.post("/api/patients", json={"caretakers": [{"name": "John"}]})
        assert response.status_code == 400

    def test_invalid_caretaker_is_reported(self, client, patient_payload):
        patient_payload["caretakers"].append({"relation": "aunt"})
        response = client.post("/api/patients", json=patient_payload)

        assert response.status_code == 400
        assert response.json()["details"][0]["index"] == 2

    def test_unknown_disease_writes_nothing(self, client, db_session, patient_payload):
        patient_payload["selectedDiseases"] = [{"disease_id": 42}]
        response = client.post("/api/patients", json=patient_payload)

        assert response.status_code == 400
        assert response.json()["details"] == [42]
        assert db_session.query(Patient).count() == 0

    def test_missing_patient(self, client):
        response = client.get("/api/patients/999")
        assert response.status_code == 404
        assert response.json()["error"] == "Patient not found"

    def test_create_with_files(self, client, create_patient, patient_payload, upload_root):
        patient_id = create_patient(patient_payload, files=all_attachments())

        files = client.get(f"/api/patients/{patient_id}").json()["files"]

        photo = files["photo"]
        assert re.match(r"^uploads/images/Jane_Doe/Jane_Doe_\d+\.png$", photo["file_path"])
        assert photo["url"] == "/" + photo["file_path"]
        assert photo["original_name"] == "face.png"
        assert [f["original_name"] for f in files["proof"]] == ["id-front.png", "id-back.pdf"]
        assert all(f["file_path"].startswith("uploads/files/Jane_Doe/") for f in files["proof"])
        assert files["policy"][0]["file_path"].startswith("uploads/insurance/Jane_Doe/")

        for f in [photo] + files["proof"] + files["policy"]:
            assert (upload_root.parent / f["file_path"]).exists()

    def test_rejected_upload_writes_nothing(self, client, db_session, patient_payload, upload_root):
        data = {key: json.dumps(value) for key, value in patient_payload.items()}
        response = client.post(
            "/api/patients",
            data=data,
            files={"photo": ("face.pdf", PDF_BYTES, "application/pdf")},
        )

        assert response.status_code == 400
        assert response.json()["details"]["limit"] == "file_type"
        assert db_session.query(Patient).count() == 0
        assert stored_files(upload_root) == []

    def test_create_is_audited(self, client, create_patient, db_session, patient_payload):
        patient_id = create_patient(patient_payload)

        entry = db_session.query(AuditLog).filter(AuditLog.action == "create").one()
        assert entry.resource_id == str(patient_id)
        assert entry.new_values["caretakers"] == 2


class TestAtomicity:
    """A failure part way through a create leaves nothing behind."""

    @pytest.fixture
    def failing_hospitals(self, monkeypatch):
        def fail(self, db, insurance_id, hospitals):
            raise SQLAlchemyError("simulated hospital insert failure")
        monkeypatch.setattr(PatientWriter, "_add_hospitals", fail)

    def test_create_rolls_back(self, client, db_session, patient_payload, failing_hospitals):
        response = client.post("/api/patients", json=patient_payload)

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to complete patient create"
        assert "simulated" not in response.text
        for model in (Patient, Caretaker, InsuranceDetail, InsuranceHospital, Question, Habit,
                      PatientDisease, PatientFile, AuditLog):
            assert db_session.query(model).count() == 0

    def test_create_removes_staged_files(self, client, db_session, patient_payload, upload_root,
                                         failing_hospitals):
        data = {key: json.dumps(value) for key, value in patient_payload.items()}
        response = client.post("/api/patients", data=data, files=all_attachments())

        assert response.status_code == 500
        assert db_session.query(Patient).count() == 0
        assert stored_files(upload_root) == []

    def test_replace_rolls_back(self, client, create_patient, db_session, patient_payload, failing_hospitals):
        del patient_payload["insurance"]
        patient_id = create_patient(patient_payload)

        response = client.put(
            f"/api/patients/insurance/{patient_id}",
            json={"insuranceCompany": "New Co", "hospitals": [{"hospitalName": "X"}]},
        )

        assert response.status_code == 500
        assert db_session.query(InsuranceDetail).count() == 0


class TestReplaceSections:
    """Tests for the per-section replace endpoints."""

    def test_caretakers_replace_is_idempotent(self, client, create_patient, db_session, patient_payload):
        patient_id = create_patient(patient_payload)
        body = [{"name": "Ann", "relation": "sister"}, {"name": "Bob", "relation": "brother"},
                {"name": "Cat", "relation": "friend"}]

        for _ in range(2):
            response = client.put(f"/api/patients/caretakers/{patient_id}", json=body)
            assert response.status_code == 200
            assert response.json()["count"] == 3

            rows = db_session.query(Caretaker).filter(Caretaker.patient_id == patient_id).all()
            assert sorted(c.name for c in rows) == ["Ann", "Bob", "Cat"]
            db_session.expire_all()

    def test_empty_caretakers_clears(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        assert client.put(f"/api/patients/caretakers/{patient_id}", json=[]).status_code == 200
        assert client.get(f"/api/patients/{patient_id}").json()["caretakers"] == []

    def test_insurance_replaced_with_hospitals(self, client, create_patient, db_session, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(
            f"/api/patients/insurance/{patient_id}",
            json={
                "insurance": {"insuranceCompany": "New Co", "packageDetail": "family"},
                "insuranceHospitals": [{"hospitalName": "General", "hospitalAddress": "9 Elm"}],
            },
        )
        assert response.status_code == 200

        insurance = client.get(f"/api/patients/{patient_id}").json()["insurance"]
        assert insurance["insuranceCompany"] == "New Co"
        assert insurance["packageDetail"] == "family"
        assert [h["hospitalName"] for h in insurance["hospitals"]] == ["General"]
        assert db_session.query(InsuranceDetail).count() == 1
        assert db_session.query(InsuranceHospital).count() == 1

    def test_insurance_null_removes(self, client, create_patient, db_session, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(
            f"/api/patients/insurance/{patient_id}",
            content=b"null",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 200
        assert client.get(f"/api/patients/{patient_id}").json()["insurance"] is None
        assert db_session.query(InsuranceHospital).count() == 0

    def test_questions_replaced(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(f"/api/patients/questions/{patient_id}", json={"q9": {"answer": "yes"}})
        assert response.status_code == 200
        assert client.get(f"/api/patients/{patient_id}").json()["questions"] == {
            "q9": {"answer": "yes", "details": None}
        }

    def test_habits_replaced(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(f"/api/patients/habits/{patient_id}", json={"alcohol": "yes", "alcoholYears": 2})
        assert response.status_code == 200
        assert client.get(f"/api/patients/{patient_id}").json()["habits"] == {
            "alcohol": "yes", "alcoholYears": 2
        }

    def test_unknown_habit_rejected(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(f"/api/patients/habits/{patient_id}", json={"gambling": "yes"})
        assert response.status_code == 400
        assert response.json()["details"] == ["gambling"]

    def test_disease_id_boundary(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        rejected = client.put(f"/api/patients/selectedDiseases/{patient_id}", json=[{"disease_id": 1000000}])
        assert rejected.status_code == 400

        accepted = client.put(f"/api/patients/selectedDiseases/{patient_id}", json=[{"disease_id": 5}])
        assert accepted.status_code == 200

        selections = client.get(f"/api/patients/selectedDiseases/{patient_id}").json()
        assert [d["disease_id"] for d in selections] == [5]

    def test_unknown_disease_keeps_previous_selection(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(f"/api/patients/selectedDiseases/{patient_id}", json=[{"disease_id": 42}])
        assert response.status_code == 400

        selections = client.get(f"/api/patients/selectedDiseases/{patient_id}").json()
        assert [d["disease_id"] for d in selections] == [1, 5]

    def test_selected_diseases_of_missing_patient(self, client):
        assert client.get("/api/patients/selectedDiseases/999").status_code == 404

    def test_replace_on_missing_patient(self, client):
        response = client.put("/api/patients/caretakers/999", json=[{"name": "Ann"}])
        assert response.status_code == 404

    def test_invalid_json_body(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(
            f"/api/patients/questions/{patient_id}",
            content=b"{nope",
            headers={"content-type": "application/json"},
        )
        assert response.status_code == 400

    def test_replace_is_audited(self, client, create_patient, db_session, patient_payload):
        patient_id = create_patient(patient_payload)
        client.put(f"/api/patients/questions/{patient_id}", json={"q1": "no"})

        entry = db_session.query(AuditLog).filter(AuditLog.action == "replace_questions").one()
        assert entry.resource_id == str(patient_id)


class TestUpdatePatient:
    """Tests for PUT /patients/:id."""

    def test_root_fields_only(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(f"/api/patients/{patient_id}", json={"rcity": "Mumbai"})
        assert response.status_code == 200

        profile = client.get(f"/api/patients/{patient_id}").json()
        assert profile["rcity"] == "Mumbai"
        assert profile["name"] == "Jane"
        assert len(profile["caretakers"]) == 2

    def test_patient_and_sections(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(
            f"/api/patients/{patient_id}",
            json={"patient": {"lname": "Smith"}, "caretakers": [{"name": "Ann"}]},
        )
        assert response.status_code == 200
        assert response.json()["updated"] == ["caretakers", "patient"]

        profile = client.get(f"/api/patients/{patient_id}").json()
        assert profile["lname"] == "Smith"
        assert [c["name"] for c in profile["caretakers"]] == ["Ann"]
        assert len(profile["questions"]) == 3

    def test_cannot_clear_name(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(f"/api/patients/{patient_id}", json={"patient": {"name": None}})
        assert response.status_code == 400

    def test_multipart_update_with_photo(self, client, create_patient, patient_payload, upload_root):
        patient_id = create_patient(patient_payload)

        response = client.put(
            f"/api/patients/{patient_id}",
            data={"patient": json.dumps({"name": "Janet"})},
            files=photo_upload(),
        )
        assert response.status_code == 200

        photo = client.get(f"/api/patients/{patient_id}").json()["files"]["photo"]
        assert re.match(r"^uploads/images/Janet_Doe/Janet_Doe_\d+\.png$", photo["file_path"])
        assert (upload_root.parent / photo["file_path"]).exists()
        assert not list((upload_root / "others").glob("*"))

    def test_update_missing_patient(self, client):
        assert client.put("/api/patients/999", json={"rcity": "Pune"}).status_code == 404


class TestPhoto:
    """Photo uploads land in the patient's folder and replace the previous photo."""

    def test_photo_routed_to_patient_folder(self, client, create_patient, patient_payload, upload_root):
        patient_id = create_patient(patient_payload)

        response = client.put(f"/api/patients/photo/{patient_id}", files=photo_upload())
        assert response.status_code == 200

        photos = client.get(f"/api/patients/files/{patient_id}/photo").json()
        assert len(photos) == 1
        assert re.match(r"^uploads/images/Jane_Doe/Jane_Doe_\d+\.png$", photos[0]["file_path"])
        assert (upload_root.parent / photos[0]["file_path"]).exists()
        assert not list((upload_root / "others").glob("*"))

    def test_second_photo_replaces_first(self, client, create_patient, patient_payload, upload_root):
        patient_id = create_patient(patient_payload)

        client.put(f"/api/patients/photo/{patient_id}", files=photo_upload("first.png"))
        first = client.get(f"/api/patients/files/{patient_id}/photo").json()[0]

        response = client.put(f"/api/patients/photo/{patient_id}", files=photo_upload("second.png"))
        assert response.status_code == 200

        photos = client.get(f"/api/patients/files/{patient_id}/photo").json()
        assert len(photos) == 1
        assert photos[0]["original_name"] == "second.png"
        assert photos[0]["id"] != first["id"]
        assert photos[0]["file_path"] != first["file_path"]
        assert (upload_root.parent / photos[0]["file_path"]).exists()
        assert not (upload_root.parent / first["file_path"]).exists()
        assert len(stored_files(upload_root)) == 1

    def test_stale_photo_id_does_not_reach_new_photo(self, client, create_patient, patient_payload, upload_root):
        patient_id = create_patient(patient_payload)

        client.put(f"/api/patients/photo/{patient_id}", files=photo_upload("first.png"))
        first = client.get(f"/api/patients/files/{patient_id}/photo").json()[0]
        client.put(f"/api/patients/photo/{patient_id}", files=photo_upload("second.png"))

        assert client.delete(f"/api/patients/file/{first['id']}").status_code == 404

        photos = client.get(f"/api/patients/files/{patient_id}/photo").json()
        assert [p["original_name"] for p in photos] == ["second.png"]
        assert (upload_root.parent / photos[0]["file_path"]).exists()

    def test_concurrent_photo_uploads_leave_one_photo(self, client, create_patient, db_session,
                                                      patient_payload, upload_root):
        patient_id = create_patient(patient_payload)

        def upload(i):
            return client.put(f"/api/patients/photo/{patient_id}", files=photo_upload(f"face-{i}.png"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            codes = [r.status_code for r in pool.map(upload, range(8))]

        assert codes == [200] * 8
        rows = db_session.query(PatientFile).filter(PatientFile.patient_id == patient_id).all()
        assert len(rows) == 1
        assert rows[0].file_type == "photo"
        assert stored_files(upload_root) == [(upload_root.parent / rows[0].file_path).resolve()]
        assert len(patient_locks) == 0


    def test_photo_must_be_image(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(
            f"/api/patients/photo/{patient_id}",
            files={"photo": ("scan.pdf", PDF_BYTES, "application/pdf")},
        )
        assert response.status_code == 400

    def test_photo_endpoint_rejects_other_fields(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(
            f"/api/patients/photo/{patient_id}",
            files={"proofFiles": ("id.png", PNG_BYTES, "image/png")},
        )
        assert response.status_code == 400
        assert response.json()["details"]["limit"] == "field"

    def test_photo_without_file(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.put(f"/api/patients/photo/{patient_id}", data={"note": "x"})
        assert response.status_code == 400

    def test_photo_for_missing_patient_leaves_no_file(self, client, upload_root):
        response = client.put("/api/patients/photo/999", files=photo_upload())

        assert response.status_code == 404
        assert stored_files(upload_root) == []

    def test_proof_files_replaced(self, client, create_patient, patient_payload, upload_root):
        patient_id = create_patient(patient_payload, files=all_attachments())
        old = client.get(f"/api/patients/files/{patient_id}/proof").json()
        assert len(old) == 2

        response = client.put(
            f"/api/patients/proof-files/{patient_id}",
            files=[("proofFiles", ("new-id.pdf", PDF_BYTES, "application/pdf"))],
        )
        assert response.status_code == 200

        proofs = client.get(f"/api/patients/files/{patient_id}/proof").json()
        assert [p["original_name"] for p in proofs] == ["new-id.pdf"]
        assert proofs[0]["file_path"].startswith("uploads/files/Jane_Doe/Jane_Doe_")
        for p in old:
            assert not (upload_root.parent / p["file_path"]).exists()

    def test_policy_files_replaced(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload, files=all_attachments())

        response = client.put(
            f"/api/patients/policy-files/{patient_id}",
            files=[
                ("policyFiles", ("a.pdf", PDF_BYTES, "application/pdf")),
                ("policyFiles", ("b.docx", b"doc", "application/octet-stream")),
            ],
        )
        assert response.status_code == 200

        policies = client.get(f"/api/patients/files/{patient_id}/policy").json()
        assert [p["original_name"] for p in policies] == ["a.pdf", "b.docx"]
        assert all(p["file_path"].startswith("uploads/insurance/Jane_Doe/") for p in policies)
        # Other categories are untouched
        assert len(client.get(f"/api/patients/files/{patient_id}/proof").json()) == 2


class TestAttachments:
    """Tests for listing and deleting attachments."""

    def test_list_files(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload, files=all_attachments())

        files = client.get(f"/api/patients/files/{patient_id}").json()
        assert sorted(f["file_type"] for f in files) == ["photo", "policy", "proof", "proof"]

    def test_list_unknown_type(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        response = client.get(f"/api/patients/files/{patient_id}/xray")
        assert response.status_code == 400
        assert response.json()["details"]["allowed"] == ["photo", "proof", "policy"]

    def test_list_missing_patient(self, client):
        assert client.get("/api/patients/files/999").status_code == 404

    def test_delete_file(self, client, create_patient, patient_payload, upload_root):
        patient_id = create_patient(patient_payload, files=all_attachments())
        photo = client.get(f"/api/patients/files/{patient_id}/photo").json()[0]

        response = client.delete(f"/api/patients/file/{photo['id']}")
        assert response.status_code == 200
        assert response.json()["file"]["id"] == photo["id"]

        assert client.get(f"/api/patients/files/{patient_id}/photo").json() == []
        assert not (upload_root.parent / photo["file_path"]).exists()
        assert client.delete(f"/api/patients/file/{photo['id']}").status_code == 404


class TestDeletePatient:
    """Cascading delete of a patient, its rows and its files."""

    def test_cascade_delete(self, client, create_patient, db_session, patient_payload, upload_root):
        patient_id = create_patient(patient_payload, files=all_attachments())
        paths = [f["file_path"] for f in client.get(f"/api/patients/files/{patient_id}").json()]
        assert len(paths) == 4

        response = client.delete(f"/api/patients/{patient_id}")
        assert response.status_code == 200
        assert response.json()["files_removed"] == 4

        assert client.get(f"/api/patients/{patient_id}").status_code == 404
        for model in (Caretaker, InsuranceDetail, Question, Habit, PatientDisease, PatientFile):
            assert db_session.query(model).filter(model.patient_id == patient_id).count() == 0
        assert db_session.query(InsuranceHospital).count() == 0
        for path in paths:
            assert not (upload_root.parent / path).exists()
        assert db_session.query(AuditLog).filter(AuditLog.action == "delete").count() == 1

    def test_other_patients_untouched(self, client, create_patient, db_session, patient_payload):
        first = create_patient(patient_payload)
        patient_payload["patient"] = {"name": "John", "lname": "Smith"}
        second = create_patient(patient_payload)

        assert client.delete(f"/api/patients/{first}").status_code == 200

        profile = client.get(f"/api/patients/{second}").json()
        assert len(profile["caretakers"]) == 2
        assert len(profile["insurance"]["hospitals"]) == 2

    def test_deleted_patient_id_is_not_reused(self, client, create_patient, patient_payload):
        first = create_patient(patient_payload)
        assert client.delete(f"/api/patients/{first}").status_code == 200

        second = create_patient(patient_payload)
        assert second != first
        assert client.get(f"/api/patients/{first}").status_code == 404


    def test_delete_missing_patient(self, client):
        assert client.delete("/api/patients/999").status_code == 404


class TestListPatients:
    """Tests for search, pagination and per-patient counts."""

    @pytest.fixture
    def three_patients(self, create_patient, patient_payload):
        jane = create_patient(patient_payload, files=[("photo", ("face.png", PNG_BYTES, "image/png"))])
        john = create_patient({"patient": {"name": "John", "lname": "Smith", "email": "john@smith.org"}})
        alice = create_patient({"patient": {"name": "Alice", "lname": "Jones", "phone": "5559999"}})
        return jane, john, alice

    def test_counts_and_order(self, client, three_patients):
        jane, john, alice = three_patients

        body = client.get("/api/patients").json()
        assert body["pagination"] == {"page": 1, "limit": 20, "total": 3, "pages": 1}
        assert [p["id"] for p in body["patients"]] == [alice, john, jane]

        entry = body["patients"][2]
        assert entry["caretaker_count"] == 2
        assert entry["question_count"] == 3
        assert entry["habit_count"] == 4
        assert entry["disease_count"] == 2
        assert entry["has_insurance"] is True
        assert entry["photo"].startswith("uploads/images/Jane_Doe/")

        assert body["patients"][0]["caretaker_count"] == 0
        assert body["patients"][0]["photo"] is None

    def test_search(self, client, three_patients):
        _, john, alice = three_patients

        assert [p["id"] for p in client.get("/api/patients?search=smi").json()["patients"]] == [john]
        assert [p["id"] for p in client.get("/api/patients?search=5559999").json()["patients"]] == [alice]
        assert client.get("/api/patients?search=nobody").json()["pagination"]["total"] == 0

    def test_pagination(self, client, three_patients):
        jane, _, _ = three_patients

        body = client.get("/api/patients?page=2&limit=2").json()
        assert [p["id"] for p in body["patients"]] == [jane]
        assert body["pagination"]["pages"] == 2

    def test_bad_limit(self, client):
        response = client.get("/api/patients?limit=0")
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"


class TestSingleTableReads:
    """Tests for the per-table read endpoints."""

    def test_reads(self, client, create_patient, patient_payload):
        patient_id = create_patient(patient_payload)

        assert len(client.get(f"/api/patients/care/{patient_id}").json()) == 2
        assert len(client.get(f"/api/patients/habits/{patient_id}").json()) == 4
        assert len(client.get(f"/api/patients/questions/{patient_id}").json()) == 3

        details = client.get(f"/api/patients/insuranceDetails/{patient_id}").json()
        assert details[0]["insuranceCompany"] == "Acme Health"

        hospitals = client.get(f"/api/patients/insuranceHospitals/{details[0]['id']}").json()
        assert [h["hospitalName"] for h in hospitals] == ["City Hospital", "County Clinic"]

    def test_empty_is_404(self, client, create_patient):
        patient_id = create_patient({"patient": {"name": "John", "lname": "Smith"}})

        assert client.get(f"/api/patients/care/{patient_id}").status_code == 404
        assert client.get("/api/patients/insuranceHospitals/999").status_code == 404
