import logging
from typing import List, Optional

from errors import ClassificationFailure, InvalidImage, NoFileProvided
from models import Prediction, StoredImage
from storage import ImageStore
from utils.helpers import (extension_for, log_processing_step, probe_image,
                           sort_predictions, validate_image_file)

logger = logging.getLogger(__name__)


def build_image_url(public_base_url: str, download_path: str, filename: str) -> str:
    """Absolute URL the external classifier fetches the stored image from"""
    base = public_base_url.rstrip("/")
    path = "/" + download_path.strip("/") + "/" if download_path.strip("/") else "/"
    return f"{base}{path}{filename}"


class ClassificationRelay:
    """Persists an upload, then asks the classifier about its public URL"""

    def __init__(self, store: ImageStore, classifier, public_base_url: str, download_path: str,
                 max_file_size: int = 10 * 1024 * 1024):
        self.store = store
        self.classifier = classifier
        self.public_base_url = public_base_url
        self.download_path = download_path
        self.max_file_size = max_file_size

    async def persist(self, contents: bytes, filename: Optional[str], content_type: Optional[str]) -> StoredImage:
        if not filename:
            raise NoFileProvided()

        ok, msg = validate_image_file(filename, content_type or "", self.max_file_size, len(contents))
        if not ok:
            raise InvalidImage(msg)

        probed = probe_image(contents)
        if probed is None:
            raise InvalidImage()
        image_format, width, height = probed
        log_processing_step("Decoded upload", {"format": image_format, "width": width, "height": height})

        return await self.store.put(contents, extension_for(filename, image_format))

    async def classify(self, stored: StoredImage) -> List[Prediction]:
        image_url = build_image_url(self.public_base_url, self.download_path, stored.filename)
        log_processing_step("Sending image for classification", {"url": image_url})
        try:
            predictions = await self.classifier.classify(image_url)
        except ClassificationFailure:
            raise
        except Exception as e:
            logger.exception(f"Classifier raised unexpectedly: {str(e)}")
            raise ClassificationFailure() from e
        return sort_predictions(predictions)

    async def classify_upload(self, contents: bytes, filename: Optional[str],
                              content_type: Optional[str]) -> List[Prediction]:
        stored = await self.persist(contents, filename, content_type)
        return await self.classify(stored)
