"""Local storage for uploaded lab documents."""
from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Tuple

_PACKAGE_UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"


def upload_dir() -> Path:
    root = Path(os.getenv("UPLOAD_ROOT") or _PACKAGE_UPLOAD_DIR)
    root.mkdir(parents=True, exist_ok=True)
    return root


def store_local_upload(data: bytes, original_name: str | None) -> Tuple[str, str]:
    """Persist the raw upload to disk and return (path, stored filename)."""
    suffix = Path(original_name or "").suffix.lower()
    safe_suffix = suffix if len(suffix) <= 10 else ""
    filename = f"{uuid.uuid4().hex}{safe_suffix}"
    path = upload_dir() / filename
    path.write_bytes(data)
    return str(path), filename


def read_upload(file_url: str) -> bytes:
    # Missing files are an infrastructure problem, not a bad document: let it raise
    return Path(file_url).read_bytes()


def delete_upload(file_url: str | None) -> bool:
    if not file_url:
        return False
    path = Path(file_url)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


__all__ = ["store_local_upload", "read_upload", "delete_upload", "upload_dir"]
