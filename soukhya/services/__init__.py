# Services Package
from .file_store import FileStore, file_store
from .upload_pipeline import UploadPipeline, upload_pipeline
from .auth_service import AuthService, AuditService, auth_service, audit_service
from .patient_locks import PatientLocks, patient_locks
from .attachment_index import AttachmentIndex, attachment_index
from .patient_assembler import PatientAssembler, patient_assembler
from .patient_writer import AggregateInput, PatientWriter, patient_writer

__all__ = [
    'FileStore',
    'file_store',
    'UploadPipeline',
    'upload_pipeline',
    'AuthService',
    'AuditService',
    'auth_service',
    'audit_service',
    'PatientLocks',
    'patient_locks',
    'AttachmentIndex',
    'attachment_index',
    'PatientAssembler',
    'patient_assembler',
    'AggregateInput',
    'PatientWriter',
    'patient_writer',
]
