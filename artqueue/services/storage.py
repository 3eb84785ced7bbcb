import hashlib
import logging
import os
import time
from fastapi import UploadFile

logger = logging.getLogger(__name__)

STORAGE_DIR = os.getenv("ARTQUEUE_STORAGE_DIR", "storage")
PUBLIC_BASE_URL = os.getenv("ARTQUEUE_PUBLIC_BASE_URL", "/storage").rstrip("/")
MAX_UPLOAD_BYTES = int(os.getenv("ARTQUEUE_MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))
ALLOWED_EXTENSIONS = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}


def ensure_storage() -> None:
    os.makedirs(os.path.join(STORAGE_DIR, "deviations"), exist_ok=True)


def _validate_extension(filename: str) -> str:
    _, ext = os.path.splitext(filename.lower())
    if ext not in ALLOWED_EXTENSIONS:
        raise ValueError("Unsupported file type. Use JPG/PNG/GIF/WEBP/BMP.")
    return ext


def object_path(storage_key: str) -> str:
    normalized = os.path.normpath(storage_key.replace("\\", "/"))
    if normalized.startswith("..") or os.path.isabs(normalized):
        raise ValueError(f"Invalid storage key: {storage_key}")
    return os.path.join(STORAGE_DIR, normalized)


def public_url(storage_key: str) -> str:
    return f"{PUBLIC_BASE_URL}/{storage_key}"


def save_file(file: UploadFile, user_id: str, deviation_id: str) -> tuple[str, int, str, str]:
    """Store an upload; returns (storage_key, size, sha256 checksum, mime type)."""
    ensure_storage()
    content = file.file.read()
    if not content:
        raise ValueError("Empty files cannot be uploaded.")
    size = len(content)
    if size > MAX_UPLOAD_BYTES:
        raise ValueError(f"File exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit.")
    filename = os.path.basename((file.filename or "upload.bin").strip()) or "upload.bin"
    ext = _validate_extension(filename)
    checksum = hashlib.sha256(content).hexdigest()
    safe_name, _ = os.path.splitext(filename)
    safe_name = "".join(ch for ch in safe_name if ch.isalnum() or ch in {"-", "_", " "}).strip() or "file"
    storage_key = f"deviations/{user_id}/{deviation_id}/{safe_name}-{int(time.time() * 1000)}{ext}"
    path = object_path(storage_key)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(content)
    return storage_key, size, checksum, ALLOWED_EXTENSIONS[ext]


def delete_object(storage_key: str) -> None:
    os.remove(object_path(storage_key))


def delete_objects_best_effort(storage_keys: list[str]) -> int:
    """Delete stored objects, logging and swallowing failures. Returns how many were removed."""
    removed = 0
    for key in storage_keys:
        try:
            delete_object(key)
            removed += 1
        except (OSError, ValueError) as exc:
            logger.warning("Failed to delete stored object %s: %s", key, exc)
    return removed
