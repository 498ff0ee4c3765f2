import asyncio
import logging
import random
import time
from typing import Any, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from errors import ClassificationFailure
from models import Prediction

logger = logging.getLogger(__name__)


def parse_predictions(payload: Any) -> List[Prediction]:
    """Accepts a bare list or {"predictions": [...]}; items use class/label and score/confidence"""
    if isinstance(payload, dict):
        payload = payload.get("predictions")
    if not isinstance(payload, list):
        raise ClassificationFailure("Classifier returned an unexpected payload")

    predictions = []
    for item in payload:
        if not isinstance(item, dict):
            raise ClassificationFailure("Classifier returned an unexpected payload")
        label = item.get("class", item.get("label"))
        score = item.get("score", item.get("confidence"))
        try:
            predictions.append(Prediction(label=label, score=score))
        except ValidationError as e:
            logger.error(f"Invalid prediction from classifier: {item} ({e.error_count()} errors)")
            raise ClassificationFailure("Classifier returned an invalid prediction") from e
    return predictions


class ClassifierClient:
    """Client for the hosted classification model, reached over HTTP"""

    def __init__(self, endpoint_url: str, model_url: str, timeout: float = 60.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.endpoint_url = endpoint_url.rstrip("/")
        self.model_url = model_url
        self.timeout = timeout
        self.transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self.transport)

    async def classify(self, image_url: str) -> List[Prediction]:
        if not self.endpoint_url:
            logger.error("Classifier endpoint URL not configured")
            raise ClassificationFailure("Classifier not configured")

        logger.info(f"Calling classifier for {image_url}")
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.endpoint_url}/classify",
                    json={"modelUrl": self.model_url, "imageUrl": image_url}
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as e:
            logger.error("Classifier request timed out")
            raise ClassificationFailure("Classifier timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"Classifier returned error: {e.response.status_code}")
            raise ClassificationFailure() from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Classifier request failed: {str(e)}")
            raise ClassificationFailure() from e

        predictions = parse_predictions(payload)
        logger.info(f"Received {len(predictions)} predictions from classifier")
        return predictions

    async def check_health(self) -> dict:
        status = {"ok": False, "latency_ms": None, "mode": "remote"}
        if not self.endpoint_url:
            return status
        start = time.perf_counter()
        try:
            async with self._client(timeout=min(self.timeout, 10)) as client:
                r = await client.get(f"{self.endpoint_url}/health")
                status["ok"] = r.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Classifier health check failed: {e}")
        status["latency_ms"] = (time.perf_counter() - start) * 1000
        return status


class MockClassifier:
    """Random scores over the known labels, for development without the hosted model"""

    def __init__(self, labels: Sequence[str], delay: float = 0.1):
        self.labels = list(labels)
        self.delay = delay

    async def classify(self, image_url: str) -> List[Prediction]:
        logger.info(f"Using mock classifier predictions for {image_url}")
        await asyncio.sleep(self.delay)

        weights = [random.uniform(0.01, 1.0) for _ in self.labels]
        total = sum(weights)
        predictions = [
            Prediction(label=label, score=round(w / total, 4))
            for label, w in zip(self.labels, weights)
        ]
        logger.info(f"Generated {len(predictions)} mock predictions")
        return predictions

    async def check_health(self) -> dict:
        return {"ok": True, "latency_ms": 0.0, "mode": "mock"}
