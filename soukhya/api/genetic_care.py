"""
Genetic Care API Routes - disease-centred patient view
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from soukhya.api.patients import RecordId, read_json
from soukhya.database import get_db
from soukhya.schemas import normalize_diseases
from soukhya.services.auth_service import StaffClaims, get_current_claims
from soukhya.services.patient_assembler import patient_assembler
from soukhya.services.patient_writer import patient_writer

router = APIRouter(prefix="/genetic-care", tags=["Genetic Care"], dependencies=[Depends(get_current_claims)])


@router.get("/{patient_id}")
def get_genetic_care(patient_id: RecordId, db: Session = Depends(get_db)):
    """Patient identity, selections grouped system -> category -> diseases, and files"""
    return patient_assembler.get_genetic_care_patient(db, patient_id)


@router.put("/{patient_id}")
async def update_genetic_care(patient_id: RecordId, request: Request, db: Session = Depends(get_db),
                              claims: Optional[StaffClaims] = Depends(get_current_claims)):
    diseases = normalize_diseases(await read_json(request))
    result = await run_in_threadpool(
        patient_writer.replace_diseases, db, patient_id, diseases, claims=claims, request=request
    )
    return {"message": "Genetic care data updated successfully", "count": len(diseases), **result}
