import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi.concurrency import run_in_threadpool

from purchasing.core.exceptions import PreconditionFailed

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "application/pdf",
}


@dataclass(frozen=True)
class ReceiptUpload:
    filename: str
    content_type: str
    data: bytes


def build_receipt_key(filename: str) -> str:
    """<epoch ms>-<16 hex chars><original extension>"""
    suffix = Path(filename or "").suffix.lower() or ".bin"
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{suffix}"


class ReceiptStorage:
    """
    Stores receipt files on local disk and hands back the URL saved as the
    order's receipt_ref. Swap for a blob-store client with the same methods
    to move files off the API host.
    """

    def __init__(self, directory: str, url_prefix: str, max_bytes: int):
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes

    def validate(self, upload: Optional[ReceiptUpload]) -> ReceiptUpload:
        if upload is None or not upload.data:
            raise PreconditionFailed("Receipt (bon) file is required")
        if upload.content_type not in ALLOWED_CONTENT_TYPES:
            raise PreconditionFailed("Receipt must be an image or a PDF")
        if len(upload.data) > self.max_bytes:
            raise PreconditionFailed(f"Receipt is larger than {self.max_bytes} bytes")
        return upload

    async def save(self, upload: ReceiptUpload) -> str:
        self.validate(upload)
        key = build_receipt_key(upload.filename)
        path = self.directory / key
        await run_in_threadpool(self._write, path, upload.data)
        logger.info("Stored receipt %s (%d bytes)", key, len(upload.data))
        return f"{self.url_prefix}/{key}"

    def owns(self, receipt_ref: Optional[str]) -> bool:
        return bool(receipt_ref) and receipt_ref.startswith(f"{self.url_prefix}/")

    async def delete(self, receipt_ref: Optional[str]) -> None:
        """Remove a receipt this storage wrote; foreign URLs are left alone."""
        if not self.owns(receipt_ref):
            return
        key = receipt_ref[len(self.url_prefix) + 1:]
        await run_in_threadpool(self._unlink, self.directory / key)

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _unlink(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning("Receipt %s already gone", path.name)
