"""
PROOF FILE STORAGE

Boundary with the file-storage collaborator for payment proofs. The ledger
only keeps the pointer returned by save():

    {"path": "/uploads/evidences/<stored name>", "original_name": ...,
     "size": <bytes>, "mime_type": ...}

Files arrive base64-encoded in the JSON body.
"""

from pathlib import Path
from typing import Any, Dict, Optional
import asyncio
import base64
import binascii
import logging
import re
import unicodedata
import uuid

from core.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".pdf", ".doc", ".docx", ".xls", ".xlsx"}
MAX_PROOF_BYTES = 10 * 1024 * 1024


def sanitize_filename(name: str, max_length: int = 80) -> str:
    """Strip accents, replace whitespace, keep [a-zA-Z0-9._-] only."""
    plain = unicodedata.normalize("NFD", name or "")
    plain = "".join(ch for ch in plain if not unicodedata.combining(ch))
    plain = re.sub(r"\s+", "_", plain)
    plain = re.sub(r"[^a-zA-Z0-9._-]", "", plain)

    path = Path(plain)
    suffix = path.suffix.lower()
    stem = path.stem[: max(1, max_length - len(suffix))] or "file"
    return f"{stem}{suffix}"


def decode_proof(content_base64: str) -> bytes:
    """Decode a base64 payload, accepting data-URL prefixes."""
    if "," in content_base64 and content_base64.lstrip().startswith("data:"):
        content_base64 = content_base64.split(",", 1)[1]
    try:
        return base64.b64decode(content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Proof file is not valid base64", field="proof_file")


class LocalProofStorage:
    """Stores proof files on local disk under upload_dir."""

    def __init__(self, upload_dir, public_prefix: str = "/uploads/evidences", max_bytes: int = MAX_PROOF_BYTES):
        self.upload_dir = Path(upload_dir)
        self.public_prefix = public_prefix.rstrip("/")
        self.max_bytes = max_bytes

    def validate(self, filename: str, content: bytes) -> str:
        safe_name = sanitize_filename(filename)
        suffix = Path(safe_name).suffix
        if suffix not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"Unsupported proof file type '{suffix or filename}'", field="proof_file"
            )
        if not content:
            raise ValidationError("Proof file is empty", field="proof_file")
        if len(content) > self.max_bytes:
            raise ValidationError(
                f"Proof file exceeds {self.max_bytes} bytes", field="proof_file"
            )
        return safe_name

    async def save(self, filename: str, content: bytes, mime_type: Optional[str] = None) -> Dict[str, Any]:
        """Write the file and return its pointer. Raises on any I/O failure."""
        safe_name = self.validate(filename, content)
        stored_name = f"{uuid.uuid4().hex}_{safe_name}"
        target = self.upload_dir / stored_name

        await asyncio.to_thread(self.upload_dir.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, content)

        logger.info(f"[PROOF_STORAGE] Stored {stored_name} ({len(content)} bytes)")
        return {
            "path": f"{self.public_prefix}/{stored_name}",
            "original_name": filename,
            "size": len(content),
            "mime_type": mime_type,
        }

    async def delete(self, pointer: Optional[Dict[str, Any]]) -> None:
        """Remove a previously stored file. Missing files are ignored."""
        if not pointer or not pointer.get("path"):
            return
        stored_name = Path(pointer["path"]).name
        target = self.upload_dir / stored_name
        try:
            await asyncio.to_thread(target.unlink)
            logger.info(f"[PROOF_STORAGE] Removed {stored_name}")
        except FileNotFoundError:
            logger.warning(f"[PROOF_STORAGE] Nothing to remove for {stored_name}")
