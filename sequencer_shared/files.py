from __future__ import annotations

import base64
import hashlib
import os
from pathlib import Path


GLB_MIME_TYPE = "model/gltf-binary"


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def to_data_uri(data: bytes, mime_type: str = GLB_MIME_TYPE) -> str:
    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{b64}"


def write_atomic(path: Path, data: bytes) -> Path:
    """Write ``data`` next to ``path`` and rename it into place."""
    tmp = path.with_name(f".{path.name}.partial")
    try:
        tmp.write_bytes(data)
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
    return path
