"""
Attachment storage.

Uploads live under ``<uploader_id>/<UTC timestamp>_<sanitised filename>``
relative to ``UPLOAD_FOLDER``; that relative path is the opaque reference
stored on a request. The store knows nothing about requests: the request
blueprint checks ``can_view`` and that the reference is listed on the
request before resolving it.
"""

import logging
import os
from datetime import datetime, timezone

from flask import current_app
from werkzeug.utils import secure_filename

from auditpack.core.exceptions import ExternalServiceError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class LocalAttachmentStore:
    """Filesystem-backed attachment store."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    # ── Write ────────────────────────────────────────────────────────────

    def build_reference(self, uploader_id: str, filename: str, now: datetime | None = None) -> str:
        safe = secure_filename(filename or "")
        if not safe:
            raise ValidationError("Invalid file", details={"file": "File name is missing or invalid"})
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%S%fZ")
        return f"{uploader_id}/{stamp}_{safe}"

    def save(self, uploader_id: str, file_storage) -> str:
        """Persist an uploaded ``werkzeug.FileStorage``; returns its reference."""
        if file_storage is None or not file_storage.filename:
            raise ValidationError("Invalid file", details={"file": "No file was uploaded"})
        ref = self.build_reference(uploader_id, file_storage.filename)

        data = file_storage.read()
        if not data:
            raise ValidationError("Invalid file", details={"file": "Uploaded file is empty"})

        path = self._path_for(ref)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as exc:
            logger.exception("Attachment write failed", extra={"profile_id": uploader_id})
            raise ExternalServiceError("storage", "File could not be stored, please retry") from exc

        logger.info("Attachment stored: %s (%d bytes)", ref, len(data), extra={"profile_id": uploader_id})
        return ref

    # ── Read ─────────────────────────────────────────────────────────────

    def resolve(self, ref: str) -> str:
        """Absolute path of an existing attachment (NotFoundError otherwise)."""
        path = self._path_for(ref)
        if not os.path.isfile(path):
            raise NotFoundError(resource="Attachment", resource_id=ref)
        return path

    def _path_for(self, ref: str) -> str:
        path = os.path.abspath(os.path.join(self.root, ref))
        if not path.startswith(self.root + os.sep):
            raise NotFoundError(resource="Attachment", resource_id=ref)
        return path

    @staticmethod
    def display_name(ref: str) -> str:
        """Original-ish file name without the namespace and timestamp."""
        name = ref.rsplit("/", 1)[-1]
        return name.split("_", 1)[1] if "_" in name else name


def get_store() -> LocalAttachmentStore:
    return LocalAttachmentStore(current_app.config["UPLOAD_FOLDER"])
