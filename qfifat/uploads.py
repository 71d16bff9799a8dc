import uuid
from pathlib import Path

from fastapi import HTTPException, UploadFile

from . import config
from .schemas import UploadOut

STATIC_PREFIX = "/static/"

IMAGE_EXT = {".png", ".jpg", ".jpeg", ".webp"}
PROOF_EXT = IMAGE_EXT | {".pdf"}


def save_upload(file: UploadFile, prefix: str, allowed: set) -> UploadOut:
    filename = file.filename or "upload"
    ext = Path(filename).suffix.lower()
    if ext not in allowed:
        raise HTTPException(status_code=400, detail=f"Only {', '.join(sorted(allowed))} allowed")

    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")

    upload_dir = Path(config.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    out_name = f"{prefix}_{uuid.uuid4().hex}{ext}"
    (upload_dir / out_name).write_bytes(data)

    # Relative URL so it works behind any host
    return UploadOut(file_url=f"{STATIC_PREFIX}{out_name}", file_name=filename)


def check_proof_url(file_url: str) -> str:
    """Proofs must point at a file this service stored: /static/<name>.<image or pdf>."""
    file_url = (file_url or "").strip()
    name = file_url[len(STATIC_PREFIX):] if file_url.startswith(STATIC_PREFIX) else ""
    if not name or "/" in name or "\\" in name or name.startswith("."):
        raise HTTPException(status_code=400, detail="Payment proof must be an uploaded file")
    if Path(name).suffix.lower() not in PROOF_EXT:
        raise HTTPException(status_code=400, detail="Payment proof must be an image or PDF")
    return file_url
