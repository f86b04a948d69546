from __future__ import annotations
import base64
import binascii
import logging
import re
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+);base64,(.*)$", re.DOTALL)

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


class StorageError(Exception):
    pass


def is_data_url(value: str) -> bool:
    return value.startswith("data:")


class ImageBucket:
    """Product image bucket. Files are public and addressed by generated name."""

    def __init__(self, root: str | Path, public_base_url: str, name: str = "product-images"):
        self.name = name
        self.root = Path(root) / name
        self.public_base_url = public_base_url.rstrip("/")

    def public_url(self, filename: str) -> str:
        return f"{self.public_base_url}/media/{self.name}/{filename}"

    def upload(self, data_url: str) -> str:
        match = DATA_URL_RE.match(data_url)
        if not match:
            raise StorageError("Only base64 image data URLs can be uploaded")
        content_type, payload = match.groups()
        try:
            content = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StorageError(f"Invalid image data: {e}") from e

        filename = f"{uuid.uuid4().hex}.{EXTENSIONS.get(content_type, 'bin')}"
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / filename).write_bytes(content)
        logger.info("Stored %s (%d bytes) in bucket %s", filename, len(content), self.name)
        return self.public_url(filename)

    def path_for(self, filename: str) -> Optional[Path]:
        # Generated names never contain separators.
        if "/" in filename or "\\" in filename or filename.startswith("."):
            return None
        path = self.root / filename
        return path if path.is_file() else None
