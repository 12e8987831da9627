from app.services.storage_service import (
    BlobStore,
    LocalBlobStore,
    S3BlobStore,
    build_blob_store,
)
from app.services.project_service import (
    ProjectService,
    IncomingFile,
    FileSubmission,
    pair_files_with_titles,
    reconcile_roll_numbers,
)

__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "build_blob_store",
    "ProjectService",
    "IncomingFile",
    "FileSubmission",
    "pair_files_with_titles",
    "reconcile_roll_numbers",
]
