# proofdesk/storage.py
"""
Proof file storage.

Env vars:
- DATA_DIR (default: current working directory)
- UPLOADS_DIR (default: $DATA_DIR/uploads)

Files are addressed by their public relative path ("/uploads/<name>"), which is
what a Submission stores in buktiPath.
"""
from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

PUBLIC_PREFIX = "/uploads/"


class StorageError(RuntimeError):
    pass


def make_proof_filename(original_name: str) -> str:
    """<epoch-millis>_<uuid4><ext>, keeping the uploaded file's extension."""
    ext = os.path.splitext(os.path.basename(original_name or ""))[1]
    return f"{int(time.time() * 1000)}_{uuid.uuid4()}{ext}"


@dataclass(frozen=True)
class LocalStorage:
    root: Path

    def _path(self, key: str) -> Path:
        safe_key = key.replace("\\", "/")
        if safe_key.startswith(PUBLIC_PREFIX):
            safe_key = safe_key[len(PUBLIC_PREFIX):]
        safe_key = safe_key.lstrip("/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Refusing path outside uploads dir: {key}")
        return p

    def public_path(self, filename: str) -> str:
        return PUBLIC_PREFIX + filename

    def put_bytes(self, filename: str, data: bytes) -> str:
        p = self._path(filename)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
        return self.public_path(filename)

    def file_path(self, key: str) -> Path:
        """Absolute path of a stored file. StorageError if missing or outside the root."""
        p = self._path(key)
        if not p.is_file():
            raise StorageError(f"No such proof file: {key}")
        return p

    def exists(self, key: str) -> bool:
        try:
            return self._path(key).exists()
        except StorageError:
            return False

    def delete(self, key: str) -> bool:
        """Remove the file if present. A missing file is not an error."""
        p = self._path(key)
        try:
            p.unlink()
            return True
        except FileNotFoundError:
            return False


def storage_from_env() -> LocalStorage:
    data_dir = Path(os.getenv("DATA_DIR") or os.getcwd())
    root = Path(os.getenv("UPLOADS_DIR") or (data_dir / "uploads"))
    root.mkdir(parents=True, exist_ok=True)
    return LocalStorage(root=root)
