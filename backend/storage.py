"""
Upload storage for images handed to the external classifier.

Stored images are addressed by a generated filename only. Names coming back
in from the download endpoint are validated before they touch the filesystem.
"""

import abc
import logging
import os
import re
import time
import uuid
from typing import AsyncIterator, Dict

import aiofiles

from errors import ImageNotFound, UploadWriteFailure
from models import StoredImage

logger = logging.getLogger(__name__)

FILENAME_PREFIX = "uploaded_image_"
CHUNK_SIZE = 64 * 1024

_SAFE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def generate_filename(suggested_ext: str = "") -> str:
    """uploaded_image_<epoch-millis>_<token><ext>"""
    millis = int(time.time() * 1000)
    return f"{FILENAME_PREFIX}{millis}_{uuid.uuid4().hex[:8]}{suggested_ext or ''}"


def is_safe_filename(filename: str) -> bool:
    if not filename or len(filename) > 255:
        return False
    return bool(_SAFE_NAME_RE.match(filename)) and ".." not in filename


class ImageStore(abc.ABC):
    """Interface: put(bytes, ext) -> StoredImage, resolve/get/iter_bytes by filename"""

    @abc.abstractmethod
    async def put(self, data: bytes, suggested_ext: str = "") -> StoredImage:
        ...

    @abc.abstractmethod
    def resolve(self, filename: str) -> StoredImage:
        ...

    @abc.abstractmethod
    def iter_bytes(self, filename: str) -> AsyncIterator[bytes]:
        ...

    async def get(self, filename: str) -> bytes:
        chunks = [chunk async for chunk in self.iter_bytes(filename)]
        return b"".join(chunks)


class LocalImageStore(ImageStore):
    """Flat directory of uploaded images"""

    def __init__(self, upload_dir: str):
        self.upload_dir = os.path.abspath(upload_dir)
        self._ensure_dir()

    def _ensure_dir(self):
        os.makedirs(self.upload_dir, exist_ok=True)

    def _path_for(self, filename: str) -> str:
        if not is_safe_filename(filename):
            logger.warning(f"Rejected unsafe filename: {filename!r}")
            raise ImageNotFound()
        path = os.path.abspath(os.path.join(self.upload_dir, filename))
        if os.path.dirname(path) != self.upload_dir:
            logger.warning(f"Rejected filename outside upload directory: {filename!r}")
            raise ImageNotFound()
        return path

    async def put(self, data: bytes, suggested_ext: str = "") -> StoredImage:
        filename = generate_filename(suggested_ext)
        path = os.path.join(self.upload_dir, filename)
        try:
            self._ensure_dir()
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            logger.error(f"Failed to write upload {path}: {e}")
            raise UploadWriteFailure() from e

        logger.info(f"Stored upload {filename} ({len(data)} bytes)")
        return StoredImage(filename=filename, path=path, size=len(data))

    def resolve(self, filename: str) -> StoredImage:
        path = self._path_for(filename)
        if not os.path.isfile(path):
            raise ImageNotFound()
        return StoredImage(filename=filename, path=path, size=os.path.getsize(path))

    async def iter_bytes(self, filename: str) -> AsyncIterator[bytes]:
        stored = self.resolve(filename)
        async with aiofiles.open(stored.path, "rb") as f:
            while True:
                chunk = await f.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk


class MemoryImageStore(ImageStore):
    def __init__(self):
        self.images: Dict[str, bytes] = {}

    async def put(self, data: bytes, suggested_ext: str = "") -> StoredImage:
        filename = generate_filename(suggested_ext)
        self.images[filename] = data
        return StoredImage(filename=filename, size=len(data))

    def resolve(self, filename: str) -> StoredImage:
        if not is_safe_filename(filename) or filename not in self.images:
            raise ImageNotFound()
        return StoredImage(filename=filename, size=len(self.images[filename]))

    async def iter_bytes(self, filename: str) -> AsyncIterator[bytes]:
        self.resolve(filename)
        yield self.images[filename]
