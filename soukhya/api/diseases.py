"""
Disease reference data (read only)
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from soukhya.database import Category, Disease, System, get_db

router = APIRouter(prefix="/diseases", tags=["Reference Data"])


@router.get("")
def list_diseases(db: Session = Depends(get_db)):
    """All diseases with their category and system"""
    rows = (
        db.query(Disease, Category, System)
        .join(Category, Disease.category_id == Category.id)
        .join(System, Category.system_id == System.id)
        .order_by(System.name, Category.name, Disease.name)
        .all()
    )
    return [
        {
            "disease_id": disease.id,
            "disease_name": disease.name,
            "code": disease.code,
            "category_id": category.id,
            "category_name": category.name,
            "system_id": system.id,
            "system_name": system.name,
        }
        for disease, category, system in rows
    ]
