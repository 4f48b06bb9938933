"""
Database Models
SQLAlchemy models for the patient intake aggregate and its attachments
"""
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime, Boolean, ForeignKey, JSON, Index
)
from sqlalchemy.orm import relationship, declarative_base
import enum

Base = declarative_base()


class FileType(str, enum.Enum):
    PHOTO = "photo"
    PROOF = "proof"
    POLICY = "policy"


class HabitCode(str, enum.Enum):
    TOBACCO = "tobacco"
    SMOKING = "smoking"
    ALCOHOL = "alcohol"
    DRUGS = "drugs"


class Patient(Base):
    """Root of the intake aggregate"""
    __tablename__ = 'patients'

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    name = Column(String(100), nullable=False)
    lname = Column(String(100), nullable=False)
    sname = Column(String(100))
    abb = Column(String(20))
    abbname = Column(String(100))
    gender = Column(String(20))
    dob = Column(Date)
    age = Column(Integer)
    ocupation = Column(String(100))

    # Contact
    phone = Column(String(20), index=True)
    email = Column(String(100), index=True)

    # Residential address
    rstatus = Column(String(50))
    raddress = Column(Text)
    rcity = Column(String(100))
    rstate = Column(String(100))
    rzipcode = Column(String(20))

    # Permanent address
    paddress = Column(Text)
    pcity = Column(String(100))
    pstate = Column(String(100))
    pzipcode = Column(String(20))

    # Identity proof
    idnum = Column(String(100))
    address_text_proof = Column(String(255))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    caretakers = relationship("Caretaker", order_by="Caretaker.id")
    insurance_details = relationship("InsuranceDetail", order_by="InsuranceDetail.id")
    questions = relationship("Question", order_by="Question.id")
    habits = relationship("Habit", order_by="Habit.id")
    diseases = relationship("PatientDisease", order_by="PatientDisease.id")
    files = relationship("PatientFile", order_by="PatientFile.created_at")

    __table_args__ = (
        Index('idx_patient_name', 'name', 'lname'),
        {'sqlite_autoincrement': True},
    )

    def __repr__(self):
        return f"<Patient {self.id}: {self.name} {self.lname}>"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.name, self.lname) if part)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'lname': self.lname,
            'sname': self.sname,
            'abb': self.abb,
            'abbname': self.abbname,
            'gender': self.gender,
            'dob': self.dob.isoformat() if self.dob else None,
            'age': self.age,
            'ocupation': self.ocupation,
            'phone': self.phone,
            'email': self.email,
            'rstatus': self.rstatus,
            'raddress': self.raddress,
            'rcity': self.rcity,
            'rstate': self.rstate,
            'rzipcode': self.rzipcode,
            'paddress': self.paddress,
            'pcity': self.pcity,
            'pstate': self.pstate,
            'pzipcode': self.pzipcode,
            'idnum': self.idnum,
            'addressTextProof': self.address_text_proof,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class Caretaker(Base):
    __tablename__ = 'caretakers'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)

    name = Column(String(100), nullable=False)
    relation = Column(String(50))
    phone = Column(String(20))
    email = Column(String(100))
    address = Column(Text)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'relation': self.relation,
            'phone': self.phone,
            'email': self.email,
            'address': self.address,
        }


class InsuranceDetail(Base):
    """Insurance policy held by a patient"""
    __tablename__ = 'insurance_details'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)

    insurance_company = Column(String(200))
    period_insurance = Column(String(100))
    sum_insured = Column(String(50))
    declined_coverage = Column(Text)
    similar_insurances = Column(Text)
    package = Column(String(100))
    package_detail = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)

    hospitals = relationship("InsuranceHospital", order_by="InsuranceHospital.id")

    def to_dict(self):
        return {
            'id': self.id,
            'insuranceCompany': self.insurance_company,
            'periodInsurance': self.period_insurance,
            'sumInsured': self.sum_insured,
            'declinedCoverage': self.declined_coverage,
            'similarInsurances': self.similar_insurances,
            'package': self.package,
            'packageDetail': self.package_detail,
        }


class InsuranceHospital(Base):
    """Network hospital attached to an insurance policy"""
    __tablename__ = 'insurance_hospitals'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    insurance_id = Column(Integer, ForeignKey('insurance_details.id'), nullable=False, index=True)

    hospital_name = Column(String(200))
    hospital_address = Column(Text)

    def to_dict(self):
        return {
            'id': self.id,
            'insurance_id': self.insurance_id,
            'hospitalName': self.hospital_name,
            'hospitalAddress': self.hospital_address,
        }


class Question(Base):
    """Answer to a questionnaire item; one row per code per patient"""
    __tablename__ = 'questions'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)

    question_code = Column(String(64), nullable=False)
    answer = Column(Text)
    details = Column(Text)

    def to_dict(self):
        return {
            'id': self.id,
            'question_code': self.question_code,
            'answer': self.answer,
            'details': self.details,
        }


class Habit(Base):
    __tablename__ = 'habits'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)

    habit_code = Column(String(20), nullable=False)
    answer = Column(String(50))
    years = Column(Integer)

    def to_dict(self):
        return {
            'id': self.id,
            'habit_code': self.habit_code,
            'answer': self.answer,
            'years': self.years,
        }


# ==================== Reference data ====================

class System(Base):
    """Top level of the disease taxonomy (e.g. cardiovascular)"""
    __tablename__ = 'systems'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)

    categories = relationship("Category", back_populates="system")


class Category(Base):
    __tablename__ = 'categories'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    system_id = Column(Integer, ForeignKey('systems.id'), nullable=False, index=True)

    system = relationship("System", back_populates="categories")
    diseases = relationship("Disease", back_populates="category")


class Disease(Base):
    __tablename__ = 'diseases'

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50))
    name = Column(String(200), nullable=False)
    category_id = Column(Integer, ForeignKey('categories.id'), nullable=False, index=True)

    category = relationship("Category", back_populates="diseases")


class PatientDisease(Base):
    """Disease selected for a patient, with disease specific answers as JSON text"""
    __tablename__ = 'patient_diseases'
    __table_args__ = {'sqlite_autoincrement': True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False, index=True)
    disease_id = Column(Integer, ForeignKey('diseases.id'), nullable=False, index=True)
    patient_data = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)

    disease = relationship("Disease")


# ==================== Attachments ====================

class PatientFile(Base):
    """Attachment index: one row per stored photo, proof or policy file"""
    __tablename__ = 'patient_files'

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Integer, ForeignKey('patients.id'), nullable=False)
    file_type = Column(String(20), nullable=False)
    file_path = Column(String(500), nullable=False)
    original_name = Column(String(255))

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_patient_file_type', 'patient_id', 'file_type'),
        {'sqlite_autoincrement': True},
    )

    def to_dict(self):
        return {
            'id': self.id,
            'patient_id': self.patient_id,
            'file_type': self.file_type,
            'file_path': self.file_path,
            'original_name': self.original_name,
            'url': f"/{self.file_path}",
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class AuditLog(Base):
    """Audit trail of changes made to patient records"""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Who
    user_id = Column(String(50))
    user_email = Column(String(100))
    user_role = Column(String(50))
    ip_address = Column(String(50))
    user_agent = Column(String(500))

    # What
    action = Column(String(100), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(50))
    description = Column(Text)
    new_values = Column(JSON)

    # When
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    success = Column(Boolean, default=True)

    __table_args__ = (
        Index('idx_audit_timestamp', 'timestamp'),
        Index('idx_audit_resource', 'resource_type', 'resource_id'),
        {'sqlite_autoincrement': True},
    )
