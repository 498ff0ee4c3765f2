import logging
import os

from models import Settings

logger = logging.getLogger(__name__)

ANIMAL_LABELS = ["dog", "cat", "rabbit", "fox", "deer"]


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def load_settings() -> Settings:
    """Build Settings from the environment"""
    is_production = os.getenv("NODE_ENV") == "production" or os.getenv("RENDER") == "true"

    default_cors = "https://candy.blbt.app" if is_production else "http://localhost:3000"
    cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", default_cors).split(",") if o.strip()]

    return Settings(
        app_name=os.getenv("APP_NAME", "Animal Face Analyzer"),
        is_production=is_production,
        upload_dir=os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "public", "uploads")),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "https://candy.blbt.app"),
        download_path=os.getenv("DOWNLOAD_PATH", "/api/download/"),
        classifier_endpoint_url=os.getenv("CLASSIFIER_ENDPOINT_URL", "").strip(),
        classifier_model_url=os.getenv(
            "CLASSIFIER_MODEL_URL", "https://teachablemachine.withgoogle.com/models/bB3YHn5r/"
        ),
        use_mock_classifier=_env_bool("USE_MOCK_CLASSIFIER", not is_production),
        request_timeout=float(os.getenv("REQUEST_TIMEOUT", "60")),
        max_file_size=int(os.getenv("MAX_FILE_SIZE", str(10 * 1024 * 1024))),
        cors_origins=cors_origins,
        rate_limit_requests=int(os.getenv("RATE_LIMIT_REQUESTS", "0")),
        rate_limit_window=int(os.getenv("RATE_LIMIT_WINDOW", "3600")),
    )


def log_settings(settings: Settings):
    logger.info(f"Environment: {'Production' if settings.is_production else 'Development'}")
    logger.info(f"Upload directory: {settings.upload_dir}")
    logger.info(f"Public base URL: {settings.public_base_url}{settings.download_path}")
    logger.info(f"Classifier endpoint configured: {bool(settings.classifier_endpoint_url)}")
    logger.info(f"Classifier model: {settings.classifier_model_url}")
    logger.info(f"Use mock classifier: {settings.use_mock_classifier}")
    logger.info(f"CORS patterns: {settings.cors_origins}")
    if settings.rate_limit_requests:
        logger.info(f"Rate limit: {settings.rate_limit_requests} requests / {settings.rate_limit_window}s")
