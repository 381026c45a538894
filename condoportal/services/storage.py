from __future__ import annotations

import mimetypes
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from fastapi import HTTPException

from ..config import settings

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class StoredFile:
    relative_path: str
    content_type: str
    size: int
    local_path: str


@dataclass
class RetrievedFile:
    content: bytes
    content_type: str


def document_path(condominium_id: int, filename: Optional[str]) -> str:
    """Storage key for an uploaded condominium document."""
    name = Path(filename or "document").name.replace(" ", "_") or "document"
    return f"documents/{condominium_id}/{uuid.uuid4().hex}_{name}"


class StorageService:
    """Keeps uploaded files on local disk under one root directory."""

    def __init__(self, root: Optional[Union[str, Path]] = None, max_bytes: Optional[int] = None) -> None:
        self.upload_root = Path(root or settings.uploads_dir)
        self.max_bytes = settings.upload_max_bytes if max_bytes is None else max_bytes

    def _normalize_relative(self, relative_path: str) -> str:
        return (relative_path or "").strip().lstrip("/")

    def _target(self, relative_path: str) -> Optional[Path]:
        # Keys that resolve outside the root are never read or written.
        root = self.upload_root.resolve()
        target = (root / self._normalize_relative(relative_path)).resolve()
        if target == root or root not in target.parents:
            return None
        return target

    def save_file(self, relative_path: str, content: bytes, content_type: Optional[str] = None) -> StoredFile:
        if not content:
            raise HTTPException(status_code=400, detail="File is empty")
        if len(content) > self.max_bytes:
            limit_mb = round(self.max_bytes / (1024 * 1024))
            raise HTTPException(status_code=400, detail=f"File cannot exceed {limit_mb}MB")
        target = self._target(relative_path)
        if target is None:
            raise HTTPException(status_code=400, detail="Invalid file path")
        relative = self._normalize_relative(relative_path)
        guessed_type = content_type or mimetypes.guess_type(relative)[0] or DEFAULT_CONTENT_TYPE
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return StoredFile(relative_path=relative, content_type=guessed_type, size=len(content), local_path=str(target))

    def delete_file(self, relative_path: str) -> None:
        target = self._target(relative_path)
        if target is not None and target.exists():
            target.unlink()

    def retrieve_file(self, relative_path: str) -> RetrievedFile:
        target = self._target(relative_path)
        if target is None or not target.exists():
            raise HTTPException(status_code=404, detail="File not found.")
        content_type = mimetypes.guess_type(target.name)[0] or DEFAULT_CONTENT_TYPE
        return RetrievedFile(content=target.read_bytes(), content_type=content_type)


storage_service = StorageService()
