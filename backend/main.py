import logging
import re
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse, Response, StreamingResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from classifier import ClassifierClient, MockClassifier
from config import ANIMAL_LABELS, load_settings, log_settings
from errors import (InvalidImage, MethodNotAllowed, NoFileProvided, RateLimited,
                    RelayError)
from models import ErrorResponse, HealthResponse, Prediction
from relay import ClassificationRelay
from storage import ImageStore, LocalImageStore
from utils.helpers import content_type_for, log_request, too_large_message

# Configure main logger
logger = logging.getLogger(__name__)

settings = load_settings()
log_settings(settings)


def is_cors_allowed(origin: str, allowed_patterns: List[str]) -> bool:
    """Check if an origin matches any of the allowed CORS patterns (supports wildcards)"""
    if not origin:
        return False

    for pattern in allowed_patterns:
        pattern = pattern.strip()
        if not pattern:
            continue

        if origin == pattern:
            return True

        if '*' in pattern:
            regex_pattern = re.escape(pattern).replace(r'\*', '.*')
            if re.fullmatch(regex_pattern, origin):
                logger.debug(f"CORS allowed: wildcard match {pattern} -> {regex_pattern}")
                return True

    logger.warning(f"CORS blocked for origin: {origin}")
    return False


class CustomCORSMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, patterns: List[str]):
        super().__init__(app)
        self.patterns = patterns

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")
        allowed = bool(origin) and is_cors_allowed(origin, self.patterns)

        # Preflight never reaches the routes
        if request.method == "OPTIONS" and allowed:
            response = Response()
            response.headers["Access-Control-Max-Age"] = "86400"
        else:
            response = await call_next(request)

        if allowed:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Methods"] = "*"
            response.headers["Access-Control-Allow-Headers"] = "*"
        return response


class RateLimiter:
    def __init__(self, requests: int = 100, window: int = 3600):
        self.requests = requests
        self.window = window
        self.store = {}

    def allow(self, key: str) -> bool:
        if self.requests <= 0:
            return True
        now = time.time()
        self._prune(now)
        data = self.store.get(key, {"count": 0, "reset": now + self.window})
        if now > data["reset"]:
            data = {"count": 0, "reset": now + self.window}
        data["count"] += 1
        self.store[key] = data
        return data["count"] <= self.requests

    def _prune(self, now: float):
        expired = [k for k, v in self.store.items() if now > v["reset"]]
        for k in expired:
            del self.store[k]


limiter = RateLimiter(requests=settings.rate_limit_requests, window=settings.rate_limit_window)

app = FastAPI(title=settings.app_name, default_response_class=ORJSONResponse)
app.add_middleware(CustomCORSMiddleware, patterns=settings.cors_origins)


@lru_cache(maxsize=1)
def get_store() -> ImageStore:
    return LocalImageStore(settings.upload_dir)


@lru_cache(maxsize=1)
def get_classifier():
    if settings.use_mock_classifier:
        return MockClassifier(ANIMAL_LABELS)
    return ClassifierClient(
        settings.classifier_endpoint_url,
        settings.classifier_model_url,
        timeout=settings.request_timeout,
    )


def get_relay(store: ImageStore = Depends(get_store), classifier=Depends(get_classifier)) -> ClassificationRelay:
    return ClassificationRelay(
        store,
        classifier,
        public_base_url=settings.public_base_url,
        download_path=settings.download_path,
        max_file_size=settings.max_file_size,
    )


def error_response(status_code: int, message: str, headers: Optional[dict] = None) -> ORJSONResponse:
    return ORJSONResponse(ErrorResponse(error=message).model_dump(), status_code=status_code, headers=headers)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = MethodNotAllowed().message if exc.status_code == 405 else str(exc.detail)
    return error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Request validation failed for {request.url.path}: {exc.errors()}")
    return error_response(422, "Invalid request")


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response(500, "Internal server error")


@app.get("/")
async def root():
    return {"name": settings.app_name, "status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/health", response_model=HealthResponse)
async def health(classifier=Depends(get_classifier)):
    start = time.perf_counter()
    classifier_status = await classifier.check_health()
    elapsed = time.perf_counter() - start
    return HealthResponse(
        status="ok",
        backend_status="ok",
        classifier_status=classifier_status,
        response_time=elapsed,
        timestamp=datetime.now(timezone.utc).isoformat()
    )


@app.post("/api/animal", response_model=List[Prediction])
async def analyze_animal(request: Request, relay: ClassificationRelay = Depends(get_relay)):
    form = await request.form()
    try:
        image = form.get("image")
        # A plain text value under "image" counts as no file
        if not isinstance(image, UploadFile) or not image.filename:
            raise NoFileProvided()

        client_key = request.client.host if request.client else "default"
        if not limiter.allow(client_key):
            raise RateLimited()

        logger.info(f"Animal analysis request received: {image.filename}, size: {image.size} bytes")
        if image.size is not None and image.size > relay.max_file_size:
            raise InvalidImage(too_large_message(relay.max_file_size))
        contents = await image.read(relay.max_file_size + 1)
        content_type = image.content_type
        filename = image.filename
    finally:
        await form.close()

    t0 = time.perf_counter()
    try:
        predictions = await relay.classify_upload(contents, filename, content_type)
    except RelayError as e:
        log_request("/api/animal", time.perf_counter() - t0, False, {"error": e.message})
        raise

    top = predictions[0] if predictions else None
    log_request("/api/animal", time.perf_counter() - t0, True, {
        "predictions": len(predictions),
        "top": f"{top.label} ({top.score:.3f})" if top else None,
    })
    return predictions


@app.api_route("/api/download/{filename}", methods=["GET", "HEAD"])
async def download_image(request: Request, filename: str, store: ImageStore = Depends(get_store)):
    stored = store.resolve(filename)
    media_type = content_type_for(stored.filename)
    headers = {"Content-Length": str(stored.size)}
    if request.method == "HEAD":
        return Response(media_type=media_type, headers=headers)
    return StreamingResponse(store.iter_bytes(stored.filename), media_type=media_type, headers=headers)


if __name__ == "__main__":  # pragma: no cover
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
