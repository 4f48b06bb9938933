"""
Patient API Routes - patient aggregate reads, writes and attachments

Endpoints that take a body are async so the multipart form or JSON can be
read without blocking; validation, staging and the database transaction then
run in the threadpool. Plain reads are sync handlers and run there already.
"""
import logging
from typing import Annotated, Any, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Path, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from soukhya.database import get_db
from soukhya.errors import NotFoundError, ValidationError
from soukhya.schemas import (
    normalize_caretakers, normalize_diseases, normalize_habits, normalize_insurance, normalize_questions
)
from soukhya.services.attachment_index import attachment_index
from soukhya.services.auth_service import StaffClaims, get_current_claims
from soukhya.services.file_store import file_store
from soukhya.services.patient_assembler import patient_assembler
from soukhya.services.patient_writer import AggregateInput, patient_writer
from soukhya.services.upload_pipeline import JSON_FIELDS, upload_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["Patients"], dependencies=[Depends(get_current_claims)])

PHOTO_FIELDS = {"photo"}
PROOF_FIELDS = {"proofFile", "proofFiles"}
POLICY_FIELDS = {"policyFiles"}

# Path ids are bounded to the SQLite INTEGER range
MAX_ROW_ID = 2 ** 63 - 1
RecordId = Annotated[int, Path(ge=1, le=MAX_ROW_ID, description="Row id")]


# ==================== Body helpers ====================

def is_form(request: Request) -> bool:
    content_type = request.headers.get("content-type", "").lower()
    return content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded"))


async def read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")


def _rows_or_404(rows: List[Any], what: str) -> List[dict]:
    if not rows:
        raise NotFoundError(f"No {what} found")
    return [row.to_dict() for row in rows]


# ==================== Listing ====================

@router.get("")
def list_patients(
    search: Optional[str] = Query(None, description="Match name, last name, phone or email"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """List patients with caretaker/question/habit/disease counts and latest photo"""
    return patient_assembler.list_patients(db, search=search, page=page, limit=limit)


# ==================== Create ====================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_patient(
    request: Request,
    db: Session = Depends(get_db),
    claims: Optional[StaffClaims] = Depends(get_current_claims)
):
    """
    Create a patient with every related section and uploaded files.

    Multipart: JSON-encoded text fields `patient`, `caretakers`/`careTaker`,
    `insurance`, `insuranceHospitals`, `questions`, `habits`,
    `selectedDiseases`; file parts `photo`, `proofFile`/`proofFiles`,
    `policyFiles`. A plain JSON body with the same keys is accepted when
    there are no files.
    """
    if is_form(request):
        form = await request.form()
        try:
            patient_id = await run_in_threadpool(_create_from_form, db, form, claims, request)
        finally:
            await form.close()
    else:
        body = await read_json(request)
        if not isinstance(body, dict):
            raise ValidationError("Request body must be an object")
        agg = AggregateInput.from_fields(body)
        patient_id = await run_in_threadpool(
            patient_writer.create_patient, db, agg, [], claims, request
        )

    return {"patient_id": patient_id, "message": "Patient created successfully"}


def _create_from_form(db: Session, form, claims, request) -> int:
    parsed = upload_pipeline.parse(form)
    agg = AggregateInput.from_fields(parsed.fields)
    staged = upload_pipeline.stage(parsed.files, agg.patient.full_name)
    return patient_writer.create_patient(db, agg, staged, claims, request)


# ==================== Attachments ====================

@router.get("/files/{patient_id}")
def list_files(patient_id: RecordId, db: Session = Depends(get_db)):
    return attachment_index.list_files(db, patient_id)


@router.get("/files/{patient_id}/{file_type}")
def list_files_by_type(patient_id: RecordId, file_type: str, db: Session = Depends(get_db)):
    return attachment_index.list_files_by_type(db, patient_id, file_type)


@router.delete("/file/{file_id}")
def delete_file(
    file_id: RecordId,
    request: Request,
    db: Session = Depends(get_db),
    claims: Optional[StaffClaims] = Depends(get_current_claims)
):
    deleted = attachment_index.delete_file(db, file_id, claims, request)
    return {"message": "File deleted successfully", "file": deleted}


@router.put("/photo/{patient_id}")
async def replace_photo(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                        claims: Optional[StaffClaims] = Depends(get_current_claims)):
    """Replace the patient's photo (multipart field `photo`)"""
    result = await _replace_files(patient_id, "photo", PHOTO_FIELDS, request, db, claims)
    return {"message": "Photo updated successfully", **result}


@router.put("/proof-files/{patient_id}")
async def replace_proof_files(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                              claims: Optional[StaffClaims] = Depends(get_current_claims)):
    """Replace identity proof documents (multipart field `proofFiles`)"""
    result = await _replace_files(patient_id, "proof", PROOF_FIELDS, request, db, claims)
    return {"message": "Proof files updated successfully", **result}


@router.put("/policy-files/{patient_id}")
async def replace_policy_files(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                               claims: Optional[StaffClaims] = Depends(get_current_claims)):
    """Replace insurance policy documents (multipart field `policyFiles`)"""
    result = await _replace_files(patient_id, "policy", POLICY_FIELDS, request, db, claims)
    return {"message": "Policy files updated successfully", **result}


async def _replace_files(patient_id: int, category: str, allowed: set, request: Request,
                         db: Session, claims) -> dict:
    if not is_form(request):
        raise ValidationError("Expected a multipart/form-data upload")
    form = await request.form()
    try:
        return await run_in_threadpool(_replace_files_sync, db, patient_id, category, allowed, form, claims, request)
    finally:
        await form.close()


def _replace_files_sync(db: Session, patient_id: int, category: str, allowed: set, form, claims, request):
    parsed = upload_pipeline.parse(form, allowed_fields=allowed)
    # Owner is unknown until the transaction reads the row; staged files are relocated there
    staged = upload_pipeline.stage(parsed.files)
    return patient_writer.replace_files(db, patient_id, category, staged, claims=claims, request=request)


# ==================== Sub-collection replacement ====================

@router.put("/caretakers/{patient_id}")
async def replace_caretakers(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                             claims: Optional[StaffClaims] = Depends(get_current_claims)):
    caretakers = normalize_caretakers(await read_json(request))
    result = await run_in_threadpool(
        patient_writer.replace_caretakers, db, patient_id, caretakers, claims=claims, request=request
    )
    return {"message": "Caretakers updated successfully", "count": len(caretakers), **result}


@router.put("/insurance/{patient_id}")
async def replace_insurance(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                            claims: Optional[StaffClaims] = Depends(get_current_claims)):
    """Replace the insurance record and its hospitals; `null` removes it"""
    insurance = normalize_insurance(await read_json(request))
    result = await run_in_threadpool(
        patient_writer.replace_insurance, db, patient_id, insurance, claims=claims, request=request
    )
    return {"message": "Insurance updated successfully", **result}


@router.put("/questions/{patient_id}")
async def replace_questions(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                            claims: Optional[StaffClaims] = Depends(get_current_claims)):
    questions = normalize_questions(await read_json(request))
    result = await run_in_threadpool(
        patient_writer.replace_questions, db, patient_id, questions, claims=claims, request=request
    )
    return {"message": "Questions updated successfully", "count": len(questions), **result}


@router.put("/habits/{patient_id}")
async def replace_habits(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                         claims: Optional[StaffClaims] = Depends(get_current_claims)):
    habits = normalize_habits(await read_json(request))
    result = await run_in_threadpool(
        patient_writer.replace_habits, db, patient_id, habits, claims=claims, request=request
    )
    return {"message": "Habits updated successfully", "count": len(habits), **result}


@router.get("/selectedDiseases/{patient_id}")
def get_selected_diseases(patient_id: RecordId, db: Session = Depends(get_db)):
    patient_assembler.get_root(db, patient_id)
    return patient_assembler.get_selected_diseases(db, patient_id)


@router.put("/selectedDiseases/{patient_id}")
async def replace_selected_diseases(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                                    claims: Optional[StaffClaims] = Depends(get_current_claims)):
    diseases = normalize_diseases(await read_json(request))
    result = await run_in_threadpool(
        patient_writer.replace_diseases, db, patient_id, diseases, claims=claims, request=request
    )
    return {"message": "Selected diseases updated successfully", "count": len(diseases), **result}


# ==================== Single-table reads ====================

@router.get("/care/{patient_id}")
def get_caretakers(patient_id: RecordId, db: Session = Depends(get_db)):
    return _rows_or_404(patient_assembler.get_caretakers(db, patient_id), "caretakers")


@router.get("/habits/{patient_id}")
def get_habits(patient_id: RecordId, db: Session = Depends(get_db)):
    return _rows_or_404(patient_assembler.get_habits(db, patient_id), "habits")


@router.get("/questions/{patient_id}")
def get_questions(patient_id: RecordId, db: Session = Depends(get_db)):
    return _rows_or_404(patient_assembler.get_questions(db, patient_id), "questions")


@router.get("/insuranceDetails/{patient_id}")
def get_insurance_details(patient_id: RecordId, db: Session = Depends(get_db)):
    return _rows_or_404(patient_assembler.get_insurance_details(db, patient_id), "insurance details")


@router.get("/insuranceHospitals/{insurance_id}")
def get_insurance_hospitals(insurance_id: RecordId, db: Session = Depends(get_db)):
    return _rows_or_404(patient_assembler.get_insurance_hospitals(db, insurance_id), "insurance hospitals")


# ==================== Single patient ====================

@router.get("/{patient_id}")
def get_patient(patient_id: RecordId, db: Session = Depends(get_db)):
    """Full patient profile: root fields, caretakers, insurance, questions, habits, diseases, files"""
    return patient_assembler.get_patient(db, patient_id)


@router.put("/{patient_id}")
async def update_patient(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                         claims: Optional[StaffClaims] = Depends(get_current_claims)):
    """
    Update root fields and replace any sections present in the body.

    Accepts JSON or multipart. A JSON body without a `patient` key or any
    section key is taken as the root fields themselves.
    """
    if is_form(request):
        form = await request.form()
        try:
            result = await run_in_threadpool(_update_from_form, db, patient_id, form, claims, request)
        finally:
            await form.close()
    else:
        body = await read_json(request)
        if not isinstance(body, dict):
            raise ValidationError("Request body must be an object")
        if "patient" not in body and not set(body) & set(JSON_FIELDS):
            body = {"patient": body}
        agg = AggregateInput.from_fields(body, partial=True)
        result = await run_in_threadpool(
            patient_writer.update_patient, db, patient_id, agg, None, claims, request
        )

    return {"message": "Patient updated successfully", **result}


def _update_from_form(db: Session, patient_id: int, form, claims, request):
    parsed = upload_pipeline.parse(form)
    agg = AggregateInput.from_fields(parsed.fields, partial=True)
    staged = upload_pipeline.stage(parsed.files, agg.patient.full_name if agg.patient else None)
    return patient_writer.update_patient(db, patient_id, agg, staged, claims, request)


@router.delete("/{patient_id}")
def delete_patient(
    patient_id: RecordId,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    claims: Optional[StaffClaims] = Depends(get_current_claims)
):
    """Delete the patient and all related rows; files are removed after the response"""
    paths = patient_writer.delete_patient(db, patient_id, claims, request)
    background_tasks.add_task(file_store.remove_many, paths)
    return {
        "message": "Patient and all related data deleted successfully",
        "patient_id": patient_id,
        "files_removed": len(paths),
    }
