"""
Patient Assembler - builds the patient profile from the aggregate tables

One root read followed by one read per related table, all inside the
caller's session so the profile reflects a single consistent view. Any
failing read fails the whole request: a profile is never returned with a
relation silently missing.
"""
import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from soukhya.database.models import (
    Caretaker, Category, Disease, FileType, Habit, InsuranceDetail, InsuranceHospital,
    Patient, PatientDisease, PatientFile, Question, System
)
from soukhya.errors import NotFoundError, PersistenceError
from soukhya.services.attachment_index import AttachmentIndex, attachment_index

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def decode_patient_data(raw: Optional[str]) -> Any:
    """patient_data is stored as JSON text; anything undecodable is returned as-is"""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return raw


class PatientAssembler:
    """Read side of the patient aggregate"""

    def __init__(self, attachments: AttachmentIndex = None):
        self.attachments = attachments or attachment_index

    @contextmanager
    def _reading(self, relation: str, patient_id):
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"Reading {relation} for patient {patient_id} failed: {e}")
            raise PersistenceError(f"Failed to load patient {relation}") from e

    # ==================== Full profile ====================

    def get_patient(self, db: Session, patient_id: int) -> Dict[str, Any]:
        """Full patient profile with every related collection"""
        patient = self.get_root(db, patient_id)

        profile = patient.to_dict()
        profile["caretakers"] = [c.to_dict() for c in self.get_caretakers(db, patient_id)]
        profile["insurance"] = self.get_insurance(db, patient_id)
        profile["questions"] = self.questions_by_code(self.get_questions(db, patient_id))
        profile["habits"] = self.habits_by_code(self.get_habits(db, patient_id))
        profile["selectedDiseases"] = self.get_selected_diseases(db, patient_id)
        with self._reading("files", patient_id):
            profile["files"] = self.attachments.bucket(self.attachments.files_for_patient(db, patient_id))
        return profile

    def get_genetic_care_patient(self, db: Session, patient_id: int) -> Dict[str, Any]:
        """
        Disease-centred view used by the genetic care screens.

        Selections are grouped system -> category -> diseases and the
        disease specific answers are decoded from their JSON text.
        """
        patient = self.get_root(db, patient_id)
        selections = self.get_selected_diseases(db, patient_id)

        systems: Dict[int, dict] = {}
        for selection in selections:
            system = systems.setdefault(selection["system_id"], {
                "system_id": selection["system_id"],
                "system_name": selection["system_name"],
                "categories": {},
            })
            category = system["categories"].setdefault(selection["category_id"], {
                "category_id": selection["category_id"],
                "category_name": selection["category_name"],
                "diseases": [],
            })
            category["diseases"].append({
                "id": selection["id"],
                "disease_id": selection["disease_id"],
                "code": selection["code"],
                "name": selection["name"],
                "patient_data": selection["patient_data"],
            })

        for system in systems.values():
            system["categories"] = list(system["categories"].values())

        with self._reading("files", patient_id):
            files = self.attachments.bucket(self.attachments.files_for_patient(db, patient_id))

        return {
            "patient": {
                "id": patient.id,
                "name": patient.name,
                "lname": patient.lname,
                "gender": patient.gender,
                "dob": patient.dob.isoformat() if patient.dob else None,
                "age": patient.age,
                "phone": patient.phone,
                "email": patient.email,
            },
            "disease_count": len(selections),
            "systems": list(systems.values()),
            "files": files,
        }

    # ==================== Relations ====================

    def get_root(self, db: Session, patient_id: int) -> Patient:
        with self._reading("record", patient_id):
            patient = db.query(Patient).filter(Patient.id == patient_id).first()
        if patient is None:
            raise NotFoundError("Patient not found", details={"patient_id": patient_id})
        return patient

    def get_caretakers(self, db: Session, patient_id: int) -> List[Caretaker]:
        with self._reading("caretakers", patient_id):
            return db.query(Caretaker).filter(Caretaker.patient_id == patient_id).order_by(Caretaker.id).all()

    def get_insurance_details(self, db: Session, patient_id: int) -> List[InsuranceDetail]:
        with self._reading("insurance", patient_id):
            return (
                db.query(InsuranceDetail)
                .filter(InsuranceDetail.patient_id == patient_id)
                .order_by(InsuranceDetail.id)
                .all()
            )

    def get_insurance_hospitals(self, db: Session, insurance_id: int) -> List[InsuranceHospital]:
        with self._reading("insurance hospitals", insurance_id):
            return (
                db.query(InsuranceHospital)
                .filter(InsuranceHospital.insurance_id == insurance_id)
                .order_by(InsuranceHospital.id)
                .all()
            )

    def get_insurance(self, db: Session, patient_id: int) -> Optional[Dict[str, Any]]:
        """The patient's insurance with nested hospitals, or None"""
        details = self.get_insurance_details(db, patient_id)
        if not details:
            return None
        if len(details) > 1:
            logger.warning(f"Patient {patient_id} has {len(details)} insurance records; returning the first")
        insurance = details[0].to_dict()
        insurance["hospitals"] = [h.to_dict() for h in self.get_insurance_hospitals(db, details[0].id)]
        return insurance

    def get_questions(self, db: Session, patient_id: int) -> List[Question]:
        with self._reading("questions", patient_id):
            return db.query(Question).filter(Question.patient_id == patient_id).order_by(Question.id).all()

    def get_habits(self, db: Session, patient_id: int) -> List[Habit]:
        with self._reading("habits", patient_id):
            return db.query(Habit).filter(Habit.patient_id == patient_id).order_by(Habit.id).all()

    def get_selected_diseases(self, db: Session, patient_id: int) -> List[Dict[str, Any]]:
        with self._reading("diseases", patient_id):
            rows = (
                db.query(PatientDisease, Disease, Category, System)
                .join(Disease, PatientDisease.disease_id == Disease.id)
                .join(Category, Disease.category_id == Category.id)
                .join(System, Category.system_id == System.id)
                .filter(PatientDisease.patient_id == patient_id)
                .order_by(PatientDisease.id)
                .all()
            )
        return [
            {
                "id": selection.id,
                "disease_id": disease.id,
                "code": disease.code,
                "name": disease.name,
                "category_id": category.id,
                "category_name": category.name,
                "system_id": system.id,
                "system_name": system.name,
                "patient_data": decode_patient_data(selection.patient_data),
            }
            for selection, disease, category, system in rows
        ]

    # ==================== Reshaping ====================

    @staticmethod
    def questions_by_code(rows: List[Question]) -> Dict[str, Dict[str, Any]]:
        return {q.question_code: {"answer": q.answer, "details": q.details} for q in rows}

    @staticmethod
    def habits_by_code(rows: List[Habit]) -> Dict[str, Any]:
        habits = {}
        for h in rows:
            habits[h.habit_code] = h.answer
            habits[f"{h.habit_code}Years"] = h.years
        return habits

    # ==================== Listing ====================

    def list_patients(self, db: Session, search: Optional[str] = None,
                      page: int = 1, limit: int = 20) -> Dict[str, Any]:
        """Search and paginate patients with per-relation counts"""
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        offset = (page - 1) * limit

        def counts(model, label):
            return (
                db.query(model.patient_id.label("patient_id"), func.count(model.id).label(label))
                .group_by(model.patient_id)
                .subquery()
            )

        caretaker_counts = counts(Caretaker, "n")
        question_counts = counts(Question, "n")
        habit_counts = counts(Habit, "n")
        disease_counts = counts(PatientDisease, "n")
        insurance_counts = counts(InsuranceDetail, "n")
        latest_photo = (
            db.query(PatientFile.patient_id.label("patient_id"), func.max(PatientFile.id).label("file_id"))
            .filter(PatientFile.file_type == FileType.PHOTO.value)
            .group_by(PatientFile.patient_id)
            .subquery()
        )
        photo = aliased(PatientFile)

        criteria = []
        if search and search.strip():
            term = f"%{search.strip()}%"
            criteria.append(or_(
                Patient.name.ilike(term),
                Patient.lname.ilike(term),
                Patient.phone.ilike(term),
                Patient.email.ilike(term),
            ))

        with self._reading("list", "*"):
            total = db.query(func.count(Patient.id)).filter(*criteria).scalar() or 0
            rows = (
                db.query(
                    Patient,
                    func.coalesce(caretaker_counts.c.n, 0),
                    func.coalesce(question_counts.c.n, 0),
                    func.coalesce(habit_counts.c.n, 0),
                    func.coalesce(disease_counts.c.n, 0),
                    func.coalesce(insurance_counts.c.n, 0),
                    photo.file_path,
                )
                .outerjoin(caretaker_counts, caretaker_counts.c.patient_id == Patient.id)
                .outerjoin(question_counts, question_counts.c.patient_id == Patient.id)
                .outerjoin(habit_counts, habit_counts.c.patient_id == Patient.id)
                .outerjoin(disease_counts, disease_counts.c.patient_id == Patient.id)
                .outerjoin(insurance_counts, insurance_counts.c.patient_id == Patient.id)
                .outerjoin(latest_photo, latest_photo.c.patient_id == Patient.id)
                .outerjoin(photo, photo.id == latest_photo.c.file_id)
                .filter(*criteria)
                .order_by(Patient.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )

        patients = [
            {
                "id": p.id,
                "name": p.name,
                "lname": p.lname,
                "phone": p.phone,
                "email": p.email,
                "photo": photo_path,
                "caretaker_count": caretakers,
                "question_count": questions,
                "habit_count": habits,
                "disease_count": diseases,
                "has_insurance": insurance > 0,
                "created_at": p.created_at.isoformat() if p.created_at else None,
            }
            for p, caretakers, questions, habits, diseases, insurance, photo_path in rows
        ]

        return {
            "patients": patients,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }


patient_assembler = PatientAssembler()
