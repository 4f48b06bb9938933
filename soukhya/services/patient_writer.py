"""
Patient Writer - creates, replaces and deletes patient aggregates

Every public operation runs as one transaction: the root row, the dependent
rows and the attachment index rows commit together or not at all. Writes for
the same patient are serialized so delete-then-insert replacements never
interleave. Files are staged on disk before the transaction starts; if the
transaction fails they are removed again, and files made obsolete by a
successful replacement are removed only after commit.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from soukhya.database.connection import atomic
from soukhya.database.models import (
    Caretaker, Disease, Habit, InsuranceDetail, InsuranceHospital, Patient,
    PatientDisease, PatientFile, Question
)
from soukhya.errors import NotFoundError, PersistenceError, ValidationError
from soukhya.schemas import (
    CaretakerIn, DiseaseSelection, HabitRow, InsuranceIn, PatientIn, QuestionRow,
    normalize_caretakers, normalize_diseases, normalize_habits, normalize_insurance,
    normalize_questions, validate_patient, validate_patient_update
)
from soukhya.services.attachment_index import AttachmentIndex, attachment_index
from soukhya.services.auth_service import StaffClaims, audit_service
from soukhya.services.file_store import FileStore, file_store
from soukhya.services.patient_locks import PatientLocks, patient_locks
from soukhya.services.upload_pipeline import StagedFile

logger = logging.getLogger(__name__)


@dataclass
class AggregateInput:
    """
    Validated request content for a create or update.

    Only sections listed in `provided` are written; an update that omits a
    section leaves it untouched, while a provided empty section clears it.
    """
    patient: Optional[PatientIn] = None
    caretakers: List[CaretakerIn] = field(default_factory=list)
    insurance: Optional[InsuranceIn] = None
    questions: List[QuestionRow] = field(default_factory=list)
    habits: List[HabitRow] = field(default_factory=list)
    diseases: List[DiseaseSelection] = field(default_factory=list)
    provided: Set[str] = field(default_factory=set)

    @classmethod
    def from_fields(cls, fields: Dict[str, Any], partial: bool = False) -> "AggregateInput":
        """Validate decoded request fields; nothing is written if this raises"""
        agg = cls()

        raw_patient = fields.get("patient")
        if raw_patient is not None:
            agg.patient = validate_patient_update(raw_patient) if partial else validate_patient(raw_patient)
        elif not partial:
            raise ValidationError("patient is required", details=["patient.name", "patient.lname"])

        for key in ("caretakers", "careTaker"):
            if key in fields:
                agg.caretakers = normalize_caretakers(fields[key])
                agg.provided.add("caretakers")
                break
        if "insurance" in fields:
            agg.insurance = normalize_insurance(fields["insurance"], fields.get("insuranceHospitals"))
            agg.provided.add("insurance")
        if "questions" in fields:
            agg.questions = normalize_questions(fields["questions"])
            agg.provided.add("questions")
        if "habits" in fields:
            agg.habits = normalize_habits(fields["habits"])
            agg.provided.add("habits")
        if "selectedDiseases" in fields:
            agg.diseases = normalize_diseases(fields["selectedDiseases"])
            agg.provided.add("diseases")
        return agg


class PatientWriter:
    """Write side of the patient aggregate"""

    def __init__(self, attachments: AttachmentIndex = None, store: FileStore = None,
                 locks: PatientLocks = None):
        self.attachments = attachments or attachment_index
        self.store = store or file_store
        self.locks = locks or patient_locks

    # ==================== Create ====================

    def create_patient(
        self,
        db: Session,
        agg: AggregateInput,
        staged: List[StagedFile] = None,
        claims: StaffClaims = None,
        request: Request = None
    ) -> int:
        """Insert the root row, its attachments and every provided section"""
        staged = staged or []
        try:
            with atomic(db, "patient create"):
                self._check_diseases_exist(db, agg.diseases)

                patient = Patient(**agg.patient.to_columns())
                db.add(patient)
                db.flush()
                patient_id = patient.id

                self._place_staged(patient, staged)
                self.attachments.record(db, patient_id, staged)
                self._write_sections(db, patient_id, agg, replace=False)

                audit_service.log(
                    db=db,
                    action="create",
                    resource_type="patient",
                    resource_id=patient_id,
                    description=f"Created patient {patient.full_name}",
                    new_values=self._summary(agg, staged),
                    claims=claims,
                    request=request,
                )
        except Exception:
            self.store.remove_many(s.file_path for s in staged)
            raise

        logger.info(f"Created patient {patient_id} with {len(staged)} file(s)")
        return patient_id

    # ==================== Update / replace ====================

    def update_patient(
        self,
        db: Session,
        patient_id: int,
        agg: AggregateInput,
        staged: List[StagedFile] = None,
        claims: StaffClaims = None,
        request: Request = None,
        action: str = "update"
    ) -> Dict[str, Any]:
        """
        Update root fields and replace every provided section and file category.

        Sections are replaced wholesale (delete all rows for the patient, then
        insert the new set). Uploaded files replace the attachments of their
        category.
        """
        staged = staged or []
        obsolete: List[str] = []
        try:
            with self.locks.hold(patient_id):
                with atomic(db, f"patient {action}"):
                    patient = self._lock_patient(db, patient_id)
                    self._check_diseases_exist(db, agg.diseases)

                    if agg.patient is not None:
                        for column, value in agg.patient.to_columns().items():
                            setattr(patient, column, value)
                        db.flush()

                    self._write_sections(db, patient_id, agg, replace=True)

                    self._place_staged(patient, staged)
                    for category in sorted({s.category for s in staged}):
                        obsolete.extend(self.attachments.delete_rows(db, patient_id, category))
                    self.attachments.record(db, patient_id, staged)

                    audit_service.log(
                        db=db,
                        action=action,
                        resource_type="patient",
                        resource_id=patient_id,
                        description=f"{action.replace('_', ' ').capitalize()} for patient {patient.full_name}",
                        new_values=self._summary(agg, staged),
                        claims=claims,
                        request=request,
                    )
        except Exception:
            self.store.remove_many(s.file_path for s in staged)
            raise

        self.store.remove_many(obsolete)
        logger.info(f"{action} applied to patient {patient_id}")
        return {
            "patient_id": patient_id,
            "updated": sorted(agg.provided | ({"patient"} if agg.patient is not None else set())),
            "files": [s.file_path for s in staged],
        }

    def replace_caretakers(self, db: Session, patient_id: int, caretakers: List[CaretakerIn], **context):
        agg = AggregateInput(caretakers=caretakers, provided={"caretakers"})
        return self.update_patient(db, patient_id, agg, action="replace_caretakers", **context)

    def replace_insurance(self, db: Session, patient_id: int, insurance: Optional[InsuranceIn], **context):
        agg = AggregateInput(insurance=insurance, provided={"insurance"})
        return self.update_patient(db, patient_id, agg, action="replace_insurance", **context)

    def replace_questions(self, db: Session, patient_id: int, questions: List[QuestionRow], **context):
        agg = AggregateInput(questions=questions, provided={"questions"})
        return self.update_patient(db, patient_id, agg, action="replace_questions", **context)

    def replace_habits(self, db: Session, patient_id: int, habits: List[HabitRow], **context):
        agg = AggregateInput(habits=habits, provided={"habits"})
        return self.update_patient(db, patient_id, agg, action="replace_habits", **context)

    def replace_diseases(self, db: Session, patient_id: int, diseases: List[DiseaseSelection], **context):
        agg = AggregateInput(diseases=diseases, provided={"diseases"})
        return self.update_patient(db, patient_id, agg, action="replace_diseases", **context)

    def replace_files(self, db: Session, patient_id: int, category: str, staged: List[StagedFile], **context):
        """Replace the photo, proof or policy attachments with freshly staged files"""
        if not staged:
            raise ValidationError(f"No {category} file uploaded")
        if any(s.category != category for s in staged):
            self.store.remove_many(s.file_path for s in staged)
            raise ValidationError(f"Only {category} files are accepted here")
        return self.update_patient(db, patient_id, AggregateInput(), staged=staged,
                                   action=f"replace_{category}", **context)

    # ==================== Delete ====================

    def delete_patient(self, db: Session, patient_id: int, claims: StaffClaims = None,
                       request: Request = None) -> List[str]:
        """
        Delete the patient and every dependent row, children first.

        Returns the attachment paths that were indexed so the caller can
        remove the files once the response is on its way.
        """
        with self.locks.hold(patient_id):
            with atomic(db, "patient delete"):
                patient = self._lock_patient(db, patient_id)
                name = patient.full_name
                paths = [f.file_path for f in self.attachments.files_for_patient(db, patient_id)]

                insurance_ids = select(InsuranceDetail.id).where(InsuranceDetail.patient_id == patient_id)
                steps = [
                    ("patient_files", db.query(PatientFile).filter(PatientFile.patient_id == patient_id)),
                    ("patient_diseases", db.query(PatientDisease).filter(PatientDisease.patient_id == patient_id)),
                    ("caretakers", db.query(Caretaker).filter(Caretaker.patient_id == patient_id)),
                    ("insurance_hospitals",
                     db.query(InsuranceHospital).filter(InsuranceHospital.insurance_id.in_(insurance_ids))),
                    ("insurance_details", db.query(InsuranceDetail).filter(InsuranceDetail.patient_id == patient_id)),
                    ("questions", db.query(Question).filter(Question.patient_id == patient_id)),
                    ("habits", db.query(Habit).filter(Habit.patient_id == patient_id)),
                    ("patients", db.query(Patient).filter(Patient.id == patient_id)),
                ]
                for step, query in steps:
                    self._run_step(step, query)

                audit_service.log(
                    db=db,
                    action="delete",
                    resource_type="patient",
                    resource_id=patient_id,
                    description=f"Deleted patient {name} and all related records",
                    new_values={"files": len(paths)},
                    claims=claims,
                    request=request,
                )

        logger.info(f"Deleted patient {patient_id} ({len(paths)} attachment(s) queued for removal)")
        return paths

    @staticmethod
    def _run_step(step: str, query):
        try:
            query.delete(synchronize_session=False)
        except SQLAlchemyError as e:
            logger.error(f"Cascade delete stopped at {step}: {e}")
            raise PersistenceError(f"Failed to delete {step}", details={"step": step}) from e

    # ==================== Section writers ====================

    def _write_sections(self, db: Session, patient_id: int, agg: AggregateInput, replace: bool):
        if "caretakers" in agg.provided:
            if replace:
                db.query(Caretaker).filter(Caretaker.patient_id == patient_id).delete(synchronize_session=False)
            self._add_caretakers(db, patient_id, agg.caretakers)

        if "insurance" in agg.provided:
            if replace:
                self._delete_insurance(db, patient_id)
            if agg.insurance is not None:
                insurance = InsuranceDetail(patient_id=patient_id, **agg.insurance.to_columns())
                db.add(insurance)
                # Hospitals need the generated insurance id
                db.flush()
                self._add_hospitals(db, insurance.id, agg.insurance.hospitals)

        if "questions" in agg.provided:
            if replace:
                db.query(Question).filter(Question.patient_id == patient_id).delete(synchronize_session=False)
            db.add_all(Question(patient_id=patient_id, **q.model_dump()) for q in agg.questions)

        if "habits" in agg.provided:
            if replace:
                db.query(Habit).filter(Habit.patient_id == patient_id).delete(synchronize_session=False)
            db.add_all(
                Habit(patient_id=patient_id, habit_code=h.habit_code.value, answer=h.answer, years=h.years)
                for h in agg.habits
            )

        if "diseases" in agg.provided:
            if replace:
                db.query(PatientDisease).filter(PatientDisease.patient_id == patient_id).delete(
                    synchronize_session=False)
            db.add_all(
                PatientDisease(patient_id=patient_id, disease_id=d.disease_id, patient_data=d.patient_data)
                for d in agg.diseases
            )

        db.flush()

    def _add_caretakers(self, db: Session, patient_id: int, caretakers: List[CaretakerIn]):
        db.add_all(Caretaker(patient_id=patient_id, **c.model_dump()) for c in caretakers)

    def _add_hospitals(self, db: Session, insurance_id: int, hospitals):
        db.add_all(
            InsuranceHospital(insurance_id=insurance_id, hospital_name=h.hospital_name,
                              hospital_address=h.hospital_address)
            for h in hospitals
        )
        db.flush()

    @staticmethod
    def _delete_insurance(db: Session, patient_id: int):
        insurance_ids = select(InsuranceDetail.id).where(InsuranceDetail.patient_id == patient_id)
        db.query(InsuranceHospital).filter(InsuranceHospital.insurance_id.in_(insurance_ids)).delete(
            synchronize_session=False)
        db.query(InsuranceDetail).filter(InsuranceDetail.patient_id == patient_id).delete(
            synchronize_session=False)

    # ==================== Helpers ====================

    def _place_staged(self, patient: Patient, staged: List[StagedFile]):
        """Move files staged before the owner was known into the owner's folders"""
        per_category: Dict[str, List[StagedFile]] = {}
        for s in staged:
            per_category.setdefault(s.category, []).append(s)

        prefix = self.store.sanitize_name(patient.full_name)
        for category, items in per_category.items():
            folder = self.store.resolve_folder(category, patient.full_name)
            for position, s in enumerate(items, start=1):
                index = position if len(items) > 1 else None
                new_name = self.store.build_filename(prefix, s.original_name, index)
                s.file_path = self.store.relocate(s.file_path, folder, new_name)

    @staticmethod
    def _lock_patient(db: Session, patient_id: int) -> Patient:
        patient = db.query(Patient).filter(Patient.id == patient_id).with_for_update().first()
        if patient is None:
            raise NotFoundError("Patient not found", details={"patient_id": patient_id})
        return patient

    @staticmethod
    def _check_diseases_exist(db: Session, diseases: List[DiseaseSelection]):
        wanted = {d.disease_id for d in diseases}
        if not wanted:
            return
        found = {row[0] for row in db.query(Disease.id).filter(Disease.id.in_(wanted)).all()}
        missing = sorted(wanted - found)
        if missing:
            raise ValidationError("Unknown disease ids", details=missing)

    @staticmethod
    def _summary(agg: AggregateInput, staged: List[StagedFile]) -> Dict[str, Any]:
        summary = {
            "caretakers": len(agg.caretakers),
            "insurance": agg.insurance is not None,
            "questions": len(agg.questions),
            "habits": len(agg.habits),
            "diseases": len(agg.diseases),
            "files": len(staged),
        }
        return {key: value for key, value in summary.items() if key in agg.provided or key == "files"}


patient_writer = PatientWriter()
