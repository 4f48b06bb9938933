"""
Request models and input-shape normalization

Clients send sub-collections in several shapes: arrays, single objects, and
keyed objects ({"q1": {...}} for questions, {"tobacco": "yes",
"tobaccoYears": 3} for habits). The helpers here turn any accepted shape into
validated row models before anything touches the database.
"""
import json
from datetime import date
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from soukhya.database.models import HabitCode
from soukhya.errors import ValidationError

MAX_DISEASE_ID = 999999
MAX_QUESTION_CODE_LENGTH = 64


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _RowModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


# ==================== Patient ====================

class PatientIn(_RowModel):
    """Root patient fields; name and lname are mandatory"""
    name: str = Field(min_length=1, max_length=100)
    lname: str = Field(min_length=1, max_length=100)
    sname: Optional[str] = None
    abb: Optional[str] = None
    abbname: Optional[str] = None
    gender: Optional[str] = None
    dob: Optional[date] = None
    age: Optional[int] = Field(default=None, ge=0, le=150)
    ocupation: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    rstatus: Optional[str] = None
    raddress: Optional[str] = None
    rcity: Optional[str] = None
    rstate: Optional[str] = None
    rzipcode: Optional[str] = None
    paddress: Optional[str] = None
    pcity: Optional[str] = None
    pstate: Optional[str] = None
    pzipcode: Optional[str] = None
    idnum: Optional[str] = None
    address_text_proof: Optional[str] = Field(default=None, alias="addressTextProof")

    @field_validator("age", "email", "phone", mode="before")
    @classmethod
    def _empty_is_missing(cls, value):
        return _blank_to_none(value)

    @field_validator("rzipcode", "pzipcode", "phone", "idnum", mode="before")
    @classmethod
    def _numbers_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("dob", mode="before")
    @classmethod
    def _parse_dob(cls, value):
        value = _blank_to_none(value)
        if value is None or isinstance(value, date):
            return value
        try:
            return date_parser.parse(str(value), dayfirst=True).date()
        except (ValueError, OverflowError):
            raise ValueError("dob is not a recognisable date")

    @property
    def full_name(self) -> Optional[str]:
        return " ".join(part for part in (self.name, self.lname) if part) or None

    def to_columns(self) -> Dict[str, Any]:
        columns = self.model_dump()
        if columns.get("age") is None and self.dob:
            columns["age"] = relativedelta(date.today(), self.dob).years
        return columns


class PatientUpdate(PatientIn):
    """Partial root update: only fields present in the request change"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    lname: Optional[str] = Field(default=None, min_length=1, max_length=100)

    def to_columns(self) -> Dict[str, Any]:
        columns = self.model_dump(exclude_unset=True)
        for required in ("name", "lname"):
            if required in columns and columns[required] is None:
                raise ValidationError(f"{required} cannot be empty")
        if "dob" in columns and "age" not in columns and self.dob:
            columns["age"] = relativedelta(date.today(), self.dob).years
        return columns


# ==================== Sub-collections ====================

class CaretakerIn(_RowModel):
    name: str = Field(min_length=1, max_length=100)
    relation: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None

    @field_validator("phone", mode="before")
    @classmethod
    def _phone_as_text(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return _blank_to_none(value)


class HospitalIn(_RowModel):
    hospital_name: Optional[str] = Field(default=None, alias="hospitalName")
    hospital_address: Optional[str] = Field(default=None, alias="hospitalAddress")


class InsuranceIn(_RowModel):
    insurance_company: Optional[str] = Field(default=None, alias="insuranceCompany")
    period_insurance: Optional[str] = Field(default=None, alias="periodInsurance")
    sum_insured: Optional[str] = Field(default=None, alias="sumInsured")
    declined_coverage: Optional[str] = Field(default=None, alias="declinedCoverage")
    similar_insurances: Optional[str] = Field(default=None, alias="similarInsurances")
    package: Optional[str] = None
    package_detail: Optional[str] = Field(default=None, alias="packageDetail")
    hospitals: List[HospitalIn] = Field(default_factory=list)

    @field_validator("sum_insured", "period_insurance", "package", mode="before")
    @classmethod
    def _numbers_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("declined_coverage", "similar_insurances", mode="before")
    @classmethod
    def _flags_as_text(cls, value):
        if isinstance(value, bool):
            return "yes" if value else "no"
        if isinstance(value, (list, dict)):
            return json.dumps(value)
        return value

    def to_columns(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"hospitals"})


class QuestionRow(_RowModel):
    question_code: str = Field(min_length=1, max_length=MAX_QUESTION_CODE_LENGTH)
    answer: Optional[str] = None
    details: Optional[str] = None

    @field_validator("answer", "details", mode="before")
    @classmethod
    def _scalar_as_text(cls, value):
        if isinstance(value, bool):
            return "yes" if value else "no"
        if isinstance(value, (int, float)):
            return str(value)
        return value


class HabitRow(_RowModel):
    habit_code: HabitCode
    answer: Optional[str] = None
    years: Optional[int] = Field(default=None, ge=0, le=150)

    @field_validator("years", mode="before")
    @classmethod
    def _empty_years(cls, value):
        return _blank_to_none(value)

    @field_validator("answer", mode="before")
    @classmethod
    def _bool_answer(cls, value):
        if isinstance(value, bool):
            return "yes" if value else "no"
        return value


class DiseaseSelection(_RowModel):
    disease_id: int
    patient_data: Optional[str] = None

    @field_validator("disease_id", mode="before")
    @classmethod
    def _plausible_id(cls, value):
        # Timestamps occasionally arrive where a disease id belongs
        if isinstance(value, bool):
            raise ValueError("disease_id must be numeric")
        if isinstance(value, str):
            if not value.strip().isdigit():
                raise ValueError("disease_id must be numeric")
            value = int(value.strip())
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("disease_id must be a whole number")
            value = int(value)
        if not isinstance(value, int):
            raise ValueError("disease_id must be numeric")
        if value <= 0 or value > MAX_DISEASE_ID:
            raise ValueError(f"disease_id must be between 1 and {MAX_DISEASE_ID}")
        return value

    @field_validator("patient_data", mode="before")
    @classmethod
    def _encode_payload(cls, value):
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)


# ==================== Shape normalization ====================

def parse_json_field(raw: Any, field: str) -> Any:
    """Decode a JSON-encoded multipart field; already decoded values pass through"""
    if raw is None:
        return None
    if not isinstance(raw, str):
        return raw
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Field '{field}' is not valid JSON", details={"field": field, "reason": str(e)})


def _validate_rows(model, rows: List[Any], collection: str) -> list:
    valid = []
    invalid = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            invalid.append({"index": index, "errors": ["entry must be an object"]})
            continue
        try:
            valid.append(model.model_validate(row))
        except PydanticValidationError as e:
            invalid.append({"index": index, "errors": _error_messages(e)})
    if invalid:
        raise ValidationError(f"Invalid {collection} entries", details=invalid)
    return valid


def _error_messages(error: PydanticValidationError) -> List[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        messages.append(f"{location}: {item.get('msg')}" if location else item.get("msg"))
    return messages


def _as_list(value: Any, collection: str) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    raise ValidationError(f"{collection} must be an array or an object")


def _unwrap(value: Any, *keys: str) -> Any:
    """Accept {"caretakers": [...]} as well as the bare collection"""
    if isinstance(value, dict):
        for key in keys:
            if key in value:
                return value[key]
    return value


def validate_patient(data: Any) -> PatientIn:
    if not isinstance(data, dict):
        raise ValidationError("patient must be an object")
    try:
        return PatientIn.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError("Invalid patient data", details=_error_messages(e))


def validate_patient_update(data: Any) -> PatientUpdate:
    if not isinstance(data, dict):
        raise ValidationError("patient must be an object")
    try:
        return PatientUpdate.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError("Invalid patient data", details=_error_messages(e))


def normalize_caretakers(value: Any) -> List[CaretakerIn]:
    value = _unwrap(value, "caretakers", "careTaker")
    return _validate_rows(CaretakerIn, _as_list(value, "caretakers"), "caretaker")


def normalize_insurance(value: Any, hospitals: Any = None) -> Optional[InsuranceIn]:
    """
    Build the insurance record with its hospitals.

    Hospitals may be nested in the insurance object under "hospitals" or
    "insuranceHospitals", or passed separately (the older create shape).
    """
    if isinstance(value, dict) and "insurance" in value and isinstance(value["insurance"], (dict, type(None))):
        hospitals = value.get("insuranceHospitals", hospitals)
        value = value["insurance"]
    if value is None:
        return None
    if isinstance(value, list):
        if not value:
            return None
        if len(value) > 1:
            raise ValidationError("Only one insurance record is accepted per patient")
        value = value[0]
    if not isinstance(value, dict):
        raise ValidationError("insurance must be an object")

    data = dict(value)
    nested = data.pop("insuranceHospitals", None)
    if "hospitals" not in data:
        data["hospitals"] = nested if nested is not None else hospitals
    data["hospitals"] = [
        row.model_dump(by_alias=True)
        for row in _validate_rows(HospitalIn, _as_list(data["hospitals"], "hospitals"), "hospital")
    ]
    try:
        return InsuranceIn.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError("Invalid insurance data", details=_error_messages(e))


def normalize_questions(value: Any) -> List[QuestionRow]:
    """Questions arrive as rows or as {code: {answer, details}} / {code: answer}"""
    value = _unwrap(value, "questions")
    if value is None:
        return []
    if isinstance(value, dict) and "question_code" not in value:
        rows = []
        for code, entry in value.items():
            if isinstance(entry, dict):
                rows.append({"question_code": code, "answer": entry.get("answer"), "details": entry.get("details")})
            else:
                rows.append({"question_code": code, "answer": entry})
        value = rows
    rows = _validate_rows(QuestionRow, _as_list(value, "questions"), "question")
    codes = [row.question_code for row in rows]
    duplicates = sorted({code for code in codes if codes.count(code) > 1})
    if duplicates:
        raise ValidationError("Duplicate question codes", details=duplicates)
    return rows


def normalize_habits(value: Any) -> List[HabitRow]:
    """
    Habits arrive as rows or as {"tobacco": "yes", "tobaccoYears": 4, ...}.

    In the keyed shape a habit without an answer is skipped; keys outside the
    fixed vocabulary are rejected.
    """
    value = _unwrap(value, "habits")
    if value is None:
        return []
    if isinstance(value, dict) and "habit_code" not in value:
        known = {code.value for code in HabitCode}
        allowed = known | {f"{code}Years" for code in known}
        unknown = sorted(key for key in value if key not in allowed)
        if unknown:
            raise ValidationError("Unknown habit codes", details=unknown)
        value = [
            {"habit_code": code.value, "answer": value[code.value], "years": value.get(f"{code.value}Years")}
            for code in HabitCode
            if value.get(code.value) not in (None, "")
        ]
    rows = _validate_rows(HabitRow, _as_list(value, "habits"), "habit")
    codes = [row.habit_code for row in rows]
    if len(set(codes)) != len(codes):
        raise ValidationError("Each habit may only be answered once")
    return rows


def normalize_diseases(value: Any) -> List[DiseaseSelection]:
    value = _unwrap(value, "selectedDiseases", "diseases")
    if isinstance(value, list):
        value = [{"disease_id": item} if isinstance(item, (int, str)) else item for item in value]
    return _validate_rows(DiseaseSelection, _as_list(value, "selectedDiseases"), "disease selection")
