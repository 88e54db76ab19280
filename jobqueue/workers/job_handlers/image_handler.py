"""
Uploaded image scanning job handler
"""

import asyncio
import hashlib
from pathlib import Path
from typing import Dict, Any, Optional

from jobqueue.constants.job_types import JobTypes
from jobqueue.core.config import Settings, settings as default_settings
from jobqueue.core.errors import PermanentJobError, RetryableJobError
from jobqueue.workers.job_handlers.base_handler import BaseJobHandler
from jobqueue.core.logger import info, debug, warning


def detect_image_type(header: bytes) -> Optional[str]:
    """Identify an image format from its leading bytes."""
    if header.startswith(b"\xff\xd8\xff"):
        return "jpeg"
    if header.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if header[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if header[:4] == b"RIFF" and header[8:12] == b"WEBP":
        return "webp"
    return None


class ImageScanHandler(BaseJobHandler):
    """Handler for scanning uploaded images before they are published"""

    def __init__(self, settings: Settings = default_settings):
        super().__init__()
        self.settings = settings

    @property
    def job_type(self) -> str:
        return JobTypes.scan_image.value

    def resolve_path(self, relative_path: str) -> Path:
        upload_dir = Path(self.settings.UPLOAD_DIR).resolve()
        path = (upload_dir / relative_path).resolve()
        if upload_dir != path and upload_dir not in path.parents:
            raise PermanentJobError(f"Path escapes the upload directory: {relative_path}")
        return path

    def _scan(self, path: Path) -> Dict[str, Any]:
        size = path.stat().st_size
        if size == 0:
            raise PermanentJobError("Uploaded image is empty")
        if size > self.settings.MAX_IMAGE_BYTES:
            raise PermanentJobError(
                f"Uploaded image is {size} bytes, limit is {self.settings.MAX_IMAGE_BYTES}"
            )

        digest = hashlib.sha256()
        with path.open("rb") as f:
            header = f.read(16)
            digest.update(header)
            for chunk in iter(lambda: f.read(64 * 1024), b""):
                digest.update(chunk)

        return {
            "image_type": detect_image_type(header),
            "size_bytes": size,
            "sha256": digest.hexdigest(),
        }

    async def execute(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Expected payload:
        {
            "path": "listings/42/cover.jpg",   # relative to UPLOAD_DIR
            "image_id": 456,                   # optional, echoed back
            "expected_type": "jpeg"            # optional
        }
        """
        debug(self.logger, "Image scan started", context=payload)

        relative_path = payload.get("path")
        if not isinstance(relative_path, str) or not relative_path:
            raise PermanentJobError("Image payload is missing 'path'")

        expected_type = payload.get("expected_type")
        if expected_type is not None and not isinstance(expected_type, str):
            raise PermanentJobError("'expected_type' must be a string")

        path = self.resolve_path(relative_path)
        if not path.is_file():
            raise PermanentJobError(f"Uploaded image not found: {relative_path}")

        try:
            scan = await asyncio.to_thread(self._scan, path)
        except OSError as e:
            raise RetryableJobError(f"Could not read uploaded image: {e}") from e

        if scan["image_type"] is None:
            warning(self.logger, "Upload rejected, not a supported image", context={
                "path": relative_path,
            })
            raise PermanentJobError(f"Unsupported or corrupt image: {relative_path}")

        if expected_type and expected_type.lower() != scan["image_type"]:
            raise PermanentJobError(
                f"Image is {scan['image_type']}, expected {expected_type.lower()}"
            )

        result = {
            "status": "clean",
            "path": relative_path,
            "image_id": payload.get("image_id"),
            **scan,
        }

        info(self.logger, "Image scanned successfully", context=result)
        return result
