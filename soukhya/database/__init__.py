"""
Database Package
Provides database models, connection management, and session handling
"""
from soukhya.database.connection import get_db, db_manager, init_database, atomic
from soukhya.database.models import (
    Base, Patient, Caretaker, InsuranceDetail, InsuranceHospital, Question, Habit,
    System, Category, Disease, PatientDisease, PatientFile, AuditLog,
    FileType, HabitCode
)


__all__ = [
    'get_db', 'db_manager', 'init_database', 'atomic',
    'Base', 'Patient', 'Caretaker', 'InsuranceDetail', 'InsuranceHospital',
    'Question', 'Habit', 'System', 'Category', 'Disease', 'PatientDisease',
    'PatientFile', 'AuditLog', 'FileType', 'HabitCode'
]
