"""
Attachment Index - patient_files lookups, recording and deletion
"""
import logging
from typing import Dict, List, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from soukhya.database.connection import atomic
from soukhya.database.models import FileType, Patient, PatientFile
from soukhya.errors import NotFoundError, ValidationError
from soukhya.services.auth_service import StaffClaims, audit_service
from soukhya.services.file_store import FileStore, file_store
from soukhya.services.upload_pipeline import StagedFile

logger = logging.getLogger(__name__)


class AttachmentIndex:
    """Keyed access to the patient_files table"""

    def __init__(self, store: FileStore = None):
        self.store = store or file_store

    # ==================== Reads ====================

    def list_files(self, db: Session, patient_id: int) -> List[dict]:
        self._require_patient(db, patient_id)
        return [f.to_dict() for f in self._query(db, patient_id).all()]

    def list_files_by_type(self, db: Session, patient_id: int, file_type: str) -> List[dict]:
        file_type = self.check_type(file_type)
        self._require_patient(db, patient_id)
        return [f.to_dict() for f in self._query(db, patient_id, file_type).all()]

    def files_for_patient(self, db: Session, patient_id: int) -> List[PatientFile]:
        return self._query(db, patient_id).all()

    @staticmethod
    def bucket(files: List[PatientFile]) -> Dict[str, object]:
        """{photo: <latest or None>, proof: [...], policy: [...]} ordered by creation"""
        buckets = {"photo": None, "proof": [], "policy": []}
        for f in files:
            if f.file_type == FileType.PHOTO.value:
                buckets["photo"] = f.to_dict()
            elif f.file_type in buckets:
                buckets[f.file_type].append(f.to_dict())
        return buckets

    @staticmethod
    def check_type(file_type: str) -> str:
        try:
            return FileType(str(file_type).lower()).value
        except ValueError:
            raise ValidationError(
                f"Unknown file type '{file_type}'",
                details={"allowed": [t.value for t in FileType]},
            )

    # ==================== Writes (inside the caller's transaction) ====================

    def record(self, db: Session, patient_id: int, staged: List[StagedFile]) -> List[PatientFile]:
        """Insert index rows for files already written to disk"""
        rows = [
            PatientFile(
                patient_id=patient_id,
                file_type=s.category,
                file_path=s.file_path,
                original_name=s.original_name,
            )
            for s in staged
        ]
        db.add_all(rows)
        db.flush()
        return rows

    def delete_rows(self, db: Session, patient_id: int, file_type: Optional[str] = None) -> List[str]:
        """Delete index rows and return their paths so the files can go after commit"""
        paths = [f.file_path for f in self._query(db, patient_id, file_type).all()]
        query = db.query(PatientFile).filter(PatientFile.patient_id == patient_id)
        if file_type:
            query = query.filter(PatientFile.file_type == file_type)
        query.delete(synchronize_session=False)
        return paths

    # ==================== Single file deletion ====================

    def delete_file(self, db: Session, file_id: int, claims: StaffClaims = None,
                    request: Request = None) -> dict:
        """Delete one attachment: the row first, then the file on disk"""
        with atomic(db, "attachment delete"):
            row = db.query(PatientFile).filter(PatientFile.id == file_id).first()
            if row is None:
                raise NotFoundError("File not found", details={"file_id": file_id})
            deleted = row.to_dict()
            db.delete(row)
            audit_service.log(
                db=db,
                action="delete_file",
                resource_type="patient_file",
                resource_id=file_id,
                description=f"Deleted {row.file_type} file of patient {row.patient_id}",
                new_values={"file_path": row.file_path},
                claims=claims,
                request=request,
            )

        try:
            self.store.remove(deleted["file_path"])
        except Exception as e:
            logger.warning(f"Attachment {file_id} row deleted but file removal failed: {e}")
        return deleted

    # ==================== Helpers ====================

    @staticmethod
    def _query(db: Session, patient_id: int, file_type: Optional[str] = None):
        query = db.query(PatientFile).filter(PatientFile.patient_id == patient_id)
        if file_type:
            query = query.filter(PatientFile.file_type == file_type)
        return query.order_by(PatientFile.created_at, PatientFile.id)

    @staticmethod
    def _require_patient(db: Session, patient_id: int):
        if db.query(Patient.id).filter(Patient.id == patient_id).first() is None:
            raise NotFoundError("Patient not found", details={"patient_id": patient_id})


attachment_index = AttachmentIndex()
