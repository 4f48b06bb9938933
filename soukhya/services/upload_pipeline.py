"""
Upload Pipeline - validates multipart uploads and stages them on disk

The pipeline reads every part of a multipart form, decodes the JSON-encoded
text fields (patient, caretakers, insurance, ...), and checks each file part
against the per-field rules and the request limits before anything is
written. Staging then stores the files under the patient's folders, or under
the fallback folder when the patient is not known from the request.
"""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Dict, FrozenSet, List, Optional

from starlette.datastructures import UploadFile

from soukhya.config import settings
from soukhya.errors import UploadError
from soukhya.schemas import parse_json_field
from soukhya.services.file_store import FileStore, file_store

logger = logging.getLogger(__name__)


IMAGE_TYPES = frozenset({
    "image/jpeg", "image/jpg", "image/pjpeg", "image/png", "image/gif",
    "image/webp", "image/bmp", "image/tiff", "image/heic", "image/heif",
})
IMAGE_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tif", ".tiff", ".heic", ".heif",
})
PDF_TYPES = frozenset({"application/pdf", "application/x-pdf"})
DOCUMENT_TYPES = frozenset({
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.oasis.opendocument.text",
    "application/vnd.oasis.opendocument.spreadsheet",
    "application/rtf", "text/rtf", "text/plain", "text/csv",
    "application/zip", "application/x-zip-compressed",
})
DOCUMENT_EXTENSIONS = frozenset({
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".odt", ".ods", ".rtf", ".txt", ".csv", ".zip",
})
GENERIC_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})


@dataclass(frozen=True)
class FileRule:
    """What a file category accepts"""
    category: str
    mime_types: FrozenSet[str]
    extensions: FrozenSet[str]
    # Accept generic binary uploads regardless of extension
    permissive: bool = False

    def accepts(self, content_type: Optional[str], filename: str) -> bool:
        ctype = (content_type or "").split(";")[0].strip().lower()
        ext = Path(filename or "").suffix.lower()
        if ctype in self.mime_types:
            return True
        if ctype in GENERIC_TYPES:
            return self.permissive or ext in self.extensions
        return self.permissive and ext in self.extensions


CATEGORY_RULES = {
    "photo": FileRule("photo", IMAGE_TYPES, IMAGE_EXTENSIONS),
    "proof": FileRule("proof", IMAGE_TYPES | PDF_TYPES, IMAGE_EXTENSIONS | {".pdf"}),
    "policy": FileRule(
        "policy",
        IMAGE_TYPES | PDF_TYPES | DOCUMENT_TYPES,
        IMAGE_EXTENSIONS | DOCUMENT_EXTENSIONS,
        permissive=True,
    ),
}

# Multipart file field -> attachment category (None: category comes from file_type)
FILE_FIELDS = {
    "photo": "photo",
    "proofFile": "proof",
    "proofFiles": "proof",
    "policyFiles": "policy",
    "files": None,
}

CATEGORY_LIMITS = {"photo": 1, "proof": 10, "policy": 10}

JSON_FIELDS = (
    "patient", "caretakers", "careTaker", "insurance", "insuranceHospitals",
    "questions", "habits", "selectedDiseases",
)


@dataclass
class IncomingFile:
    """A validated file part waiting to be staged"""
    field: str
    category: str
    filename: str
    content_type: Optional[str]
    size: int
    stream: BinaryIO


@dataclass
class StagedFile:
    """A file written to disk but not yet recorded in the attachment index"""
    category: str
    file_path: str
    original_name: str


@dataclass
class ParsedUpload:
    fields: Dict[str, Any] = field(default_factory=dict)
    files: List[IncomingFile] = field(default_factory=list)

    def files_for(self, category: str) -> List[IncomingFile]:
        return [f for f in self.files if f.category == category]


class UploadPipeline:
    """Multipart intake: decode, validate, stage"""

    def __init__(self, store: FileStore = None, max_file_size: int = None, max_file_count: int = None):
        self.store = store or file_store
        self._max_file_size = max_file_size
        self._max_file_count = max_file_count

    @property
    def max_file_size(self) -> int:
        return self._max_file_size or settings.MAX_FILE_SIZE

    @property
    def max_file_count(self) -> int:
        return self._max_file_count or settings.MAX_FILE_COUNT

    # ==================== Parsing ====================

    def parse(self, form, allowed_fields: Optional[set] = None) -> ParsedUpload:
        """
        Decode a multipart form into JSON fields and validated file parts.

        allowed_fields restricts which file fields this endpoint accepts.
        Raises UploadError for limit/type/field violations and
        ValidationError for malformed JSON fields.
        """
        parsed = ParsedUpload()
        raw_files = []
        file_types = []

        for name, value in form.multi_items():
            if isinstance(value, UploadFile):
                if not value.filename:
                    # Browsers send an empty part for an untouched file input
                    continue
                if name not in FILE_FIELDS or (allowed_fields is not None and name not in allowed_fields):
                    raise UploadError(
                        f"Unexpected file field '{name}'",
                        details={"limit": "field", "field": name},
                    )
                raw_files.append((name, value))
            elif name == "file_type":
                file_types.append(str(value).strip().lower())
            elif name in JSON_FIELDS:
                parsed.fields[name] = parse_json_field(value, name)

        generic = [item for item in raw_files if item[0] == "files"]
        generic_types = self._generic_categories(file_types, len(generic))

        generic_index = 0
        for name, upload in raw_files:
            category = FILE_FIELDS[name]
            if category is None:
                category = generic_types[generic_index]
                generic_index += 1
            parsed.files.append(self._check_file(name, category, upload))

        self._check_counts(parsed.files)
        return parsed

    @staticmethod
    def _generic_categories(file_types: List[str], count: int) -> List[str]:
        if count == 0:
            return []
        if not file_types:
            raise UploadError(
                "file_type is required when uploading to 'files'",
                details={"limit": "file_type", "field": "files"},
            )
        if len(file_types) == 1:
            file_types = file_types * count
        if len(file_types) != count:
            raise UploadError(
                "file_type must be given once or once per file",
                details={"limit": "file_type", "field": "files"},
            )
        unknown = sorted({t for t in file_types if t not in CATEGORY_RULES})
        if unknown:
            raise UploadError(
                "Unknown file_type",
                details={"limit": "file_type", "allowed": sorted(CATEGORY_RULES), "received": unknown},
            )
        return file_types

    def _check_file(self, field_name: str, category: str, upload: UploadFile) -> IncomingFile:
        size = self._measure(upload.file)
        if size > self.max_file_size:
            raise UploadError(
                f"File '{upload.filename}' exceeds the maximum size of {self.max_file_size} bytes",
                details={"limit": "max_file_size", "field": field_name,
                         "filename": upload.filename, "max": self.max_file_size, "size": size},
            )
        rule = CATEGORY_RULES[category]
        if not rule.accepts(upload.content_type, upload.filename):
            raise UploadError(
                f"File type not allowed for '{field_name}'",
                details={"limit": "file_type", "field": field_name, "filename": upload.filename,
                         "content_type": upload.content_type},
            )
        return IncomingFile(
            field=field_name,
            category=category,
            filename=upload.filename,
            content_type=upload.content_type,
            size=size,
            stream=upload.file,
        )

    def _check_counts(self, files: List[IncomingFile]):
        if len(files) > self.max_file_count:
            raise UploadError(
                f"Too many files: at most {self.max_file_count} per request",
                details={"limit": "max_file_count", "max": self.max_file_count, "received": len(files)},
            )
        for category, limit in CATEGORY_LIMITS.items():
            count = sum(1 for f in files if f.category == category)
            if count > limit:
                raise UploadError(
                    f"Too many {category} files: at most {limit}",
                    details={"limit": "max_count", "category": category, "max": limit, "received": count},
                )

    @staticmethod
    def _measure(stream: BinaryIO) -> int:
        stream.seek(0, 2)
        size = stream.tell()
        stream.seek(0)
        return size

    # ==================== Staging ====================

    def stage(self, files: List[IncomingFile], patient_name: Optional[str] = None) -> List[StagedFile]:
        """
        Write validated files to disk.

        With a patient name the files go straight to their category folders;
        without one they land in the fallback folder and must be relocated
        once the owner is known. On failure every file written so far is
        removed before the error propagates.
        """
        staged = []
        per_category = {}
        for incoming in files:
            per_category.setdefault(incoming.category, []).append(incoming)

        try:
            for category, items in per_category.items():
                folder = self.store.resolve_folder(category, patient_name)
                for position, incoming in enumerate(items, start=1):
                    index = position if len(items) > 1 else None
                    incoming.stream.seek(0)
                    path = self.store.store(incoming.stream, folder, incoming.filename, patient_name, index)
                    staged.append(StagedFile(category=category, file_path=path, original_name=incoming.filename))
        except Exception:
            self.discard(staged)
            raise

        logger.info(f"Staged {len(staged)} file(s) for {patient_name or 'unknown patient'}")
        return staged

    def discard(self, staged: List[StagedFile]):
        """Remove staged files after a failed request"""
        self.store.remove_many(s.file_path for s in staged)


upload_pipeline = UploadPipeline()
