"""
File Store - per-patient, per-category blob storage on the local filesystem

Layout under the upload root:
    images/<Patient_Name>/     photos
    files/<Patient_Name>/      identity proof documents
    insurance/<Patient_Name>/  insurance policy documents
    others/                    staging area when the patient is not yet known

Paths handed out (and stored in patient_files.file_path) are POSIX paths
relative to the parent of the upload root, e.g. "uploads/images/Jane_Doe/x.jpg",
so they double as URL paths under the static mount.
"""
import logging
import re
import shutil
import time
from pathlib import Path
from typing import BinaryIO, Iterable, Optional

from soukhya.config import settings
from soukhya.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)


class FileStore:
    """Filesystem-backed attachment storage"""

    CATEGORY_FOLDERS = {
        "photo": "images",
        "proof": "files",
        "policy": "insurance",
    }
    FALLBACK_FOLDER = "others"
    UNKNOWN_NAME = "unknown"

    def __init__(self, root: Path = None):
        self._root = Path(root) if root else None

    @property
    def root(self) -> Path:
        # Resolved lazily so tests can repoint settings.UPLOAD_DIR
        return (self._root or Path(settings.UPLOAD_DIR)).resolve()

    # ==================== Naming ====================

    @classmethod
    def sanitize_name(cls, patient_name: Optional[str]) -> str:
        """'Jane  Doe' -> 'Jane_Doe'; anything unsafe in a path is dropped"""
        if not patient_name or not str(patient_name).strip():
            return cls.UNKNOWN_NAME
        name = re.sub(r"\s+", "_", str(patient_name).strip())
        name = re.sub(r"[^\w.\-]", "", name).lstrip(".")
        return name or cls.UNKNOWN_NAME

    def resolve_folder(self, category: str, patient_name: Optional[str] = None) -> Path:
        """Directory a file of this category belongs in for this patient"""
        folder = self.CATEGORY_FOLDERS.get(category)
        if folder is None or not patient_name or self.sanitize_name(patient_name) == self.UNKNOWN_NAME:
            return self.root / self.FALLBACK_FOLDER
        return self.root / folder / self.sanitize_name(patient_name)

    @staticmethod
    def build_filename(prefix: str, original_name: str, index: Optional[int] = None) -> str:
        ext = Path(original_name or "").suffix.lower()
        stamp = int(time.time() * 1000)
        suffix = f"_{index}" if index is not None else ""
        return f"{prefix}_{stamp}{suffix}{ext}"

    # ==================== Path mapping ====================

    def to_relative(self, physical: Path) -> str:
        return Path(physical).resolve().relative_to(self.root.parent).as_posix()

    def to_physical(self, stored_path: str) -> Path:
        """Map a stored path back to disk, refusing anything outside the upload root"""
        candidate = (self.root.parent / stored_path).resolve()
        if self.root not in candidate.parents:
            raise ValidationError("File path is outside the upload directory", details={"path": stored_path})
        return candidate

    # ==================== Operations ====================

    def store(self, stream: BinaryIO, folder: Path, original_name: str,
              patient_name: Optional[str] = None, index: Optional[int] = None) -> str:
        """
        Write a stream into folder as <name>_<epochMillis>[_<index>].<ext>.

        Returns the stored (relative) path. The folder is created if needed.
        """
        folder = Path(folder)
        prefix = self.sanitize_name(patient_name)
        try:
            folder.mkdir(parents=True, exist_ok=True)
            target = self._free_target(folder, self.build_filename(prefix, original_name, index))
            with open(target, "wb") as buffer:
                shutil.copyfileobj(stream, buffer)
        except OSError as e:
            logger.error(f"Failed to store upload {original_name!r} in {folder}: {e}")
            raise PersistenceError("Failed to save uploaded file") from e
        return self.to_relative(target)

    def relocate(self, current_path: str, correct_folder: Path, new_name: str) -> str:
        """
        Move a file staged in the wrong folder into the right one.

        A file already inside correct_folder is left alone. If the move fails
        the original stays where it was and the error is raised.
        """
        source = self.to_physical(current_path)
        correct_folder = Path(correct_folder).resolve()
        if source.parent == correct_folder:
            return current_path
        if not source.exists():
            raise PersistenceError("Staged file is missing", details={"path": current_path})

        target = self._free_target(correct_folder, new_name)
        try:
            correct_folder.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as e:
            logger.error(f"Failed to relocate {current_path} to {target}: {e}")
            raise PersistenceError("Failed to move uploaded file into place") from e

        logger.info(f"Relocated {current_path} -> {self.to_relative(target)}")
        self._prune(source.parent)
        return self.to_relative(target)

    def remove(self, stored_path: str) -> bool:
        """Delete a stored file (missing is fine) and prune its folder if now empty"""
        path = self.to_physical(stored_path)
        removed = False
        try:
            path.unlink()
            removed = True
        except FileNotFoundError:
            logger.info(f"File already gone: {stored_path}")
        self._prune(path.parent)
        return removed

    def remove_many(self, stored_paths: Iterable[str]):
        """Best-effort cleanup; failures are logged and never raised"""
        for stored_path in stored_paths:
            try:
                self.remove(stored_path)
            except Exception as e:
                logger.warning(f"Could not remove {stored_path}: {e}")

    @staticmethod
    def _free_target(folder: Path, name: str) -> Path:
        """folder/name, or folder/<stem>_<n><ext> if that is taken (same millisecond)"""
        target = folder / name
        stem, ext = target.stem, target.suffix
        counter = 1
        while target.exists():
            target = folder / f"{stem}_{counter}{ext}"
            counter += 1
        return target

    def _prune(self, folder: Path):
        """Remove folder if empty, walking up but never past the category level"""
        root = self.root
        folder = Path(folder)
        while folder != root and root in folder.parents and folder.parent != root:
            try:
                if any(folder.iterdir()):
                    return
                folder.rmdir()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not prune {folder}: {e}")
                return
            folder = folder.parent


file_store = FileStore()
