import io
import logging
import os
import re
from typing import List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from models import Prediction

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

ALLOWED_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
# Browsers and some webcam captures send these for image blobs
GENERIC_TYPES = {"", "application/octet-stream"}

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

FORMAT_EXTENSIONS = {"JPEG": ".jpg", "PNG": ".png", "GIF": ".gif", "WEBP": ".webp"}
_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,8}$")


def too_large_message(max_size: int) -> str:
    if max_size >= 1024 * 1024:
        return f"File too large. Max {max_size // (1024 * 1024)}MB allowed."
    return f"File too large. Max {max_size} bytes allowed."


def validate_image_file(filename: str, content_type: str, max_size: int, size_bytes: int) -> Tuple[bool, str]:
    logger.info(f"Validating image file: {filename}, type: {content_type}, size: {size_bytes} bytes")

    if not filename:
        logger.warning("Image filename missing")
        return False, "Filename missing."
    if content_type not in ALLOWED_TYPES and content_type not in GENERIC_TYPES:
        logger.warning(f"Invalid image type: {content_type} for file {filename}")
        return False, "Invalid file type. Only PNG, JPG, JPEG, GIF, WEBP allowed."
    if size_bytes == 0:
        logger.warning(f"Empty image file: {filename}")
        return False, "File is empty."
    if size_bytes > max_size:
        logger.warning(f"Image file too large: {size_bytes} bytes (max: {max_size}) for file {filename}")
        return False, too_large_message(max_size)

    logger.info(f"Image validation successful for {filename}")
    return True, ""


def probe_image(image_data: bytes) -> Optional[Tuple[str, int, int]]:
    """Return (format, width, height) for decodable image bytes, None otherwise"""
    try:
        with Image.open(io.BytesIO(image_data)) as img:
            img.verify()
            return img.format, img.size[0], img.size[1]
    except Image.DecompressionBombError as e:
        logger.warning(f"Image rejected as decompression bomb: {e}")
        return None
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        logger.warning(f"Image decode failed: {e}")
        return None


def extension_for(filename: str, image_format: Optional[str] = None) -> str:
    """Extension to store an upload under: the original one when sane, else one derived from the decoded format"""
    ext = os.path.splitext(filename or "")[1].lower()
    if _EXTENSION_RE.match(ext):
        return ext
    return FORMAT_EXTENSIONS.get((image_format or "").upper(), "")


def content_type_for(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    return MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)


def sort_predictions(predictions: Sequence[Prediction]) -> List[Prediction]:
    return sorted(predictions, key=lambda p: p.score, reverse=True)


def top_prediction(predictions: Sequence[Prediction]) -> Optional[Prediction]:
    """The entry the UI displays: highest score wins, input order does not matter"""
    if not predictions:
        return None
    return sort_predictions(predictions)[0]


def log_request(endpoint: str, processing_time: float, success: bool, additional_info: Optional[dict] = None):
    """Enhanced logging for API requests"""
    status = "SUCCESS" if success else "ERROR"
    log_msg = f"[API] {endpoint} - {status} - {processing_time:.3f}s"

    if additional_info:
        info_str = ", ".join([f"{k}: {v}" for k, v in additional_info.items()])
        log_msg += f" - {info_str}"

    if success:
        logger.info(log_msg)
    else:
        logger.error(log_msg)


def log_processing_step(step: str, details: Optional[dict] = None):
    """Log individual processing steps"""
    log_msg = f"[PROCESSING] {step}"
    if details:
        info_str = ", ".join([f"{k}: {v}" for k, v in details.items()])
        log_msg += f" - {info_str}"
    logger.info(log_msg)
