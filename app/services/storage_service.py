"""
Storage Service — local object storage for uploaded documents.

Objects live under ``UPLOAD_FOLDER/<bucket>/<project_id>/...`` and are
addressed by a bucket-relative path:

    {project_id}/{bucket}/{timestamp}-{secure_filename}

Each bucket has its own size cap and allowed MIME types; ``validate_upload``
raises ``ValidationError`` with the user-facing message for the bucket.
"""

import logging
import os
import time
from dataclasses import dataclass

from flask import current_app
from werkzeug.utils import secure_filename

from app.core.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MB = 1024 * 1024

PDF = "application/pdf"
JPEG = "image/jpeg"
PNG = "image/png"
HEIC = "image/heic"
WEBP = "image/webp"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# bucket → (max bytes, allowed MIME types or None for any, type error, size error)
BUCKETS = {
    "invoices": (25 * MB, (PDF, JPEG, PNG, HEIC),
                 "Invalid file type. Please upload PDF, JPEG, PNG, or HEIC.",
                 "File size must be less than 25MB"),
    "quotes": (25 * MB, (PDF, JPEG, PNG, HEIC),
               "Invalid file type. Please upload PDF, JPEG, PNG, or HEIC.",
               "File size must be less than 25MB"),
    "costs": (10 * MB, (PDF, JPEG, PNG, HEIC),
              "Invalid file type. Please upload PDF, JPEG, PNG, or HEIC.",
              "File size must be less than 10MB"),
    "rfis": (10 * MB, (PDF, JPEG, PNG, DOCX, XLSX),
             "Invalid file type. Allowed: PDF, JPEG, PNG, DOCX, XLSX",
             "File size exceeds 10MB limit"),
    "submittals": (50 * MB, None, None, "File size exceeds 50MB limit"),
    "change-orders": (50 * MB, None, None, "File size exceeds 50MB limit"),
    "daily-reports": (10 * MB, (JPEG, PNG, WEBP),
                      "Only JPEG, PNG, and WebP images are allowed",
                      "File size must be less than 10MB"),
}


@dataclass
class UploadedFile:
    """Framework-neutral upload handed from blueprints to services."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_file_storage(cls, storage):
        """Build from a werkzeug ``FileStorage`` (``request.files[...]``)."""
        return cls(
            filename=storage.filename or "upload",
            content_type=(storage.mimetype or "application/octet-stream").lower(),
            data=storage.read(),
        )


def _root():
    return current_app.config["UPLOAD_FOLDER"]


def validate_upload(bucket: str, upload: UploadedFile | None) -> None:
    max_bytes, allowed, type_error, size_error = BUCKETS[bucket]
    if upload is None or not upload.data:
        raise ValidationError("File is required", details={"file": ["File is required"]})
    if upload.size > max_bytes:
        raise ValidationError(size_error, details={"file": [size_error]})
    if allowed is not None and upload.content_type not in allowed:
        raise ValidationError(type_error, details={"file": [type_error]})


def save(bucket: str, project_id: int, upload: UploadedFile) -> str:
    """Validate and write ``upload``; return its bucket-relative path."""
    validate_upload(bucket, upload)
    name = secure_filename(upload.filename) or "file"
    rel_path = f"{project_id}/{bucket}/{int(time.time() * 1000)}-{name}"
    abs_path = os.path.join(_root(), bucket, rel_path)
    os.makedirs(os.path.dirname(abs_path), exist_ok=True)
    with open(abs_path, "wb") as fh:
        fh.write(upload.data)
    logger.info("Stored %s (%d bytes) in %s", rel_path, upload.size, bucket,
                extra={"project_id": project_id})
    return rel_path


def read(bucket: str, rel_path: str) -> bytes:
    abs_path = os.path.join(_root(), bucket, rel_path)
    if not os.path.isfile(abs_path):
        raise NotFoundError("File", rel_path)
    with open(abs_path, "rb") as fh:
        return fh.read()


def delete(bucket: str, rel_path: str) -> None:
    """Remove an object; a missing file is logged, not raised."""
    abs_path = os.path.join(_root(), bucket, rel_path)
    try:
        os.remove(abs_path)
    except FileNotFoundError:
        logger.warning("Storage delete: %s/%s already gone", bucket, rel_path)
