"""Filesystem store for schedule and saved webhook attachments."""

import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

from webhook_scheduler.config import settings
from webhook_scheduler.schemas.builder import StoredFileAttachment
from webhook_scheduler.services.payload_serializer import hydrate

log = logging.getLogger(__name__)


class AttachmentError(Exception):
    """Attachment cannot be read from storage."""


def stored_files(raw: Any) -> List[StoredFileAttachment]:
    """Attachment metadata from a persisted files column, tolerating legacy shapes."""
    return hydrate({"files": raw or []}).files


def dropped_files(old: Any, new: Any) -> List[StoredFileAttachment]:
    """Files present in old but no longer referenced by new."""
    kept = {file.storage_path for file in stored_files(new)}
    return [file for file in stored_files(old) if file.storage_path not in kept]


class AttachmentStorage:
    """Attachments keyed by their storage path under a root directory."""

    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self.base_dir = Path(base_dir or settings.attachment_storage_dir).resolve()

    def _resolve(self, storage_path: str) -> Path:
        path = (self.base_dir / storage_path).resolve()
        if path == self.base_dir or self.base_dir not in path.parents:
            raise AttachmentError(f"Storage path escapes the attachment root: {storage_path}")
        return path

    def read(self, storage_path: str) -> bytes:
        path = self._resolve(storage_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise AttachmentError(f"Attachment '{storage_path}' is unavailable: {e.strerror or e}") from e

    def remove(self, files: Iterable[StoredFileAttachment]) -> int:
        """Delete stored files. Failures are logged; returns how many were removed."""
        removed = 0
        for file in files:
            try:
                self._resolve(file.storage_path).unlink()
                removed += 1
            except FileNotFoundError:
                log.debug(f"Attachment already gone: {file.storage_path}")
            except (OSError, AttachmentError) as e:
                log.warning(f"Failed to remove attachment {file.storage_path}: {e}")
        return removed
