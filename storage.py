"""
storage.py – local-disk storage for uploaded question papers and cropped
question images.

Files are written under ``config.UPLOAD_DIR`` (``pdfs/`` and ``crops/``) with
uuid names and served back by the app under ``/uploads``.
"""

import base64
import binascii
import io
import logging
import os
import re
import uuid

import pdfplumber

import config
from errors import ValidationError

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/uploads"

_DATA_URL_RE = re.compile(r"^data:image/png;base64,", re.IGNORECASE)


def _ensure_dir(kind: str) -> str:
    path = os.path.join(config.UPLOAD_DIR, kind)
    os.makedirs(path, exist_ok=True)
    return path


def count_pdf_pages(data: bytes) -> int:
    """Page count as pdfplumber sees it; unreadable files are a validation error."""
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            return len(pdf.pages)
    except Exception as exc:
        raise ValidationError(f"Could not read PDF: {exc}") from exc


def save_pdf(data: bytes) -> tuple[str, str]:
    """Write a PDF upload; returns (stored_name, public path)."""
    stored_name = f"{uuid.uuid4()}.pdf"
    with open(os.path.join(_ensure_dir("pdfs"), stored_name), "wb") as fh:
        fh.write(data)
    logger.info("Stored PDF %s (%d bytes)", stored_name, len(data))
    return stored_name, f"{PUBLIC_PREFIX}/pdfs/{stored_name}"


def save_crop(image_data: str) -> str:
    """Decode a base64 PNG (optionally a data URL) and write it; returns the public path."""
    payload = _DATA_URL_RE.sub("", image_data.strip())
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("imageData must be base64-encoded PNG data.") from exc
    if not raw:
        raise ValidationError("imageData is empty.")

    filename = f"{uuid.uuid4()}.png"
    with open(os.path.join(_ensure_dir("crops"), filename), "wb") as fh:
        fh.write(raw)
    return f"{PUBLIC_PREFIX}/crops/{filename}"


def delete_upload(public_path: str) -> None:
    """Remove a stored file by its public path; a file already gone is fine."""
    if not public_path.startswith(PUBLIC_PREFIX + "/"):
        return
    relative = public_path[len(PUBLIC_PREFIX) + 1:]
    try:
        os.unlink(os.path.join(config.UPLOAD_DIR, *relative.split("/")))
    except FileNotFoundError:
        logger.warning("Upload %s already removed", public_path)
