"""KYC document storage on the local filesystem.

Files live under ``<UPLOAD_DIR>/<subdir>/`` and are recorded in the Kyc
row as public paths of the form ``/uploads/<subdir>/<stored name>``.
Acceptance and removal work file by file: one bad upload or one missing
file never fails the batch.
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from starlette.datastructures import UploadFile

from backoffice.common.constants import (
    ALLOWED_UPLOAD_EXTENSIONS,
    ALLOWED_UPLOAD_MIME_TYPES,
    KYC_UPLOAD_FIELDS,
)
from backoffice.common.exceptions import NotFoundException
from backoffice.config import settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


@dataclass
class RejectedUpload:
    field: str
    filename: Optional[str]
    reason: str


@dataclass
class AcceptResult:
    documents: list[dict[str, Any]] = field(default_factory=list)
    rejected: list[RejectedUpload] = field(default_factory=list)


@dataclass
class RemovalSummary:
    removed: int = 0
    missing: int = 0
    failed: list[str] = field(default_factory=list)

    def merge(self, other: "RemovalSummary") -> None:
        self.removed += other.removed
        self.missing += other.missing
        self.failed.extend(other.failed)


def document_label(field_name: str, index: int = 0) -> str:
    """``pan_card`` → "PAN Card"; multi-file fields are numbered from 1."""
    label, max_count = KYC_UPLOAD_FIELDS[field_name]
    return f"{label} {index + 1}" if max_count > 1 else label


def sanitise_basename(filename: str) -> tuple[str, str]:
    """Split *filename* into a filesystem-safe base and its extension."""
    base, ext = os.path.splitext(os.path.basename(filename or ""))
    base = _UNSAFE_CHARS.sub("_", base) or "file"
    ext = ext.lower() if re.fullmatch(r"\.[A-Za-z0-9]{1,8}", ext) else ""
    return base[:100], ext


class DocumentStore:
    """Stores and removes uploaded documents for one purpose (e.g. KYC)."""

    def __init__(
        self,
        root: Optional[str] = None,
        subdir: Optional[str] = None,
        *,
        max_bytes: Optional[int] = None,
    ) -> None:
        self.root = root or settings.UPLOAD_DIR
        self.subdir = subdir or settings.KYC_UPLOAD_SUBDIR
        self.max_bytes = max_bytes or settings.max_upload_bytes

    @property
    def directory(self) -> str:
        return os.path.join(self.root, self.subdir)

    def public_path(self, stored_name: str) -> str:
        return f"/uploads/{self.subdir}/{stored_name}"

    # ── Accept ──────────────────────────────────────────────────────

    @staticmethod
    def is_allowed(content_type: Optional[str], filename: Optional[str]) -> bool:
        """MIME allow-list first, filename extension when the type is unusable."""
        if content_type and content_type.lower() in ALLOWED_UPLOAD_MIME_TYPES:
            return True
        _, ext = os.path.splitext(filename or "")
        return ext.lower() in ALLOWED_UPLOAD_EXTENSIONS

    async def accept(
        self,
        uploads: Sequence[tuple[str, UploadFile]],
    ) -> AcceptResult:
        """Validate and store each ``(field, upload)`` pair independently."""
        result = AcceptResult()
        counts: dict[str, int] = {}

        for field_name, upload in uploads:
            filename = upload.filename
            if field_name not in KYC_UPLOAD_FIELDS:
                result.rejected.append(
                    RejectedUpload(field_name, filename, "Unknown document field."),
                )
                continue

            index = counts.get(field_name, 0)
            _, max_count = KYC_UPLOAD_FIELDS[field_name]
            if index >= max_count:
                result.rejected.append(
                    RejectedUpload(
                        field_name, filename,
                        f"At most {max_count} file(s) allowed for {field_name}.",
                    ),
                )
                continue

            if not self.is_allowed(upload.content_type, filename):
                result.rejected.append(
                    RejectedUpload(
                        field_name, filename,
                        f"File type '{upload.content_type}' is not allowed for {field_name}.",
                    ),
                )
                continue

            contents = await upload.read(self.max_bytes + 1)
            if len(contents) > self.max_bytes:
                result.rejected.append(
                    RejectedUpload(
                        field_name, filename,
                        f"File exceeds {self.max_bytes // (1024 * 1024)} MB limit.",
                    ),
                )
                continue

            try:
                stored_name = self._write(filename or field_name, contents)
            except OSError as exc:
                logger.exception("Could not store %s for field %s", filename, field_name)
                result.rejected.append(
                    RejectedUpload(field_name, filename, f"Could not store file: {exc.strerror}"),
                )
                continue

            counts[field_name] = index + 1
            result.documents.append({
                "type": document_label(field_name, index),
                "field": field_name,
                "path": self.public_path(stored_name),
                "originalName": filename,
            })

        if result.rejected:
            logger.info(
                "Rejected %d of %d uploads: %s",
                len(result.rejected), len(uploads),
                ", ".join(r.field for r in result.rejected),
            )
        return result

    def _write(self, filename: str, contents: bytes) -> str:
        os.makedirs(self.directory, exist_ok=True)
        base, ext = sanitise_basename(filename)
        stem = f"{int(time.time() * 1000)}_{base}"

        stored_name = f"{stem}{ext}"
        suffix = 0
        while True:
            try:
                # "x" mode refuses to overwrite a concurrent write of the same name
                with open(os.path.join(self.directory, stored_name), "xb") as f:
                    f.write(contents)
                return stored_name
            except FileExistsError:
                suffix += 1
                stored_name = f"{stem}-{suffix}{ext}"

    # ── Remove ──────────────────────────────────────────────────────

    def _local_path(self, path: str) -> Optional[str]:
        """Map a recorded ``/uploads/...`` path to a file under ``root``."""
        relative = path.lstrip("/")
        if relative.startswith("uploads/"):
            relative = relative[len("uploads/"):]
        local = os.path.realpath(os.path.join(self.root, relative))
        root = os.path.realpath(self.root)
        if os.path.commonpath([local, root]) != root:
            return None
        return local

    def remove_path(self, path: Optional[str]) -> RemovalSummary:
        summary = RemovalSummary()
        if not path:
            return summary

        local = self._local_path(path)
        if local is None:
            logger.warning("Refusing to remove %s outside the upload root", path)
            summary.failed.append(path)
            return summary

        try:
            os.remove(local)
        except FileNotFoundError:
            logger.info("File already gone: %s", path)
            summary.missing += 1
        except OSError:
            logger.exception("Could not remove %s", path)
            summary.failed.append(path)
        else:
            summary.removed += 1
        return summary

    def remove(self, documents: Iterable[dict[str, Any]]) -> RemovalSummary:
        """Unlink every document's file, continuing past failures."""
        summary = RemovalSummary()
        for doc in documents:
            summary.merge(self.remove_path(doc.get("path")))
        return summary

    # ── Serve ───────────────────────────────────────────────────────

    def resolve(self, filename: str) -> str:
        """Absolute path of a stored file; only bare names inside the directory."""
        if not filename or os.path.basename(filename) != filename or filename in {".", ".."}:
            raise NotFoundException("File", filename)
        local = os.path.join(self.directory, filename)
        if not os.path.isfile(local):
            raise NotFoundException("File", filename)
        return local


_store = DocumentStore()


def get_document_store() -> DocumentStore:
    """FastAPI dependency: the KYC document store (overridden in tests)."""
    return _store
