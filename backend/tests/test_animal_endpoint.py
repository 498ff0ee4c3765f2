import unittest
from unittest.mock import AsyncMock, patch

from fastapi import status
from fastapi.testclient import TestClient

import main
from errors import UploadWriteFailure
from fakes import FailingClassifier, FakeClassifier, make_image_bytes
from main import app, get_classifier, get_relay, get_store
from relay import ClassificationRelay
from starlette.datastructures import UploadFile
from storage import MemoryImageStore


class BrokenStore(MemoryImageStore):
    async def put(self, data, suggested_ext=""):
        raise UploadWriteFailure()


class CrashingStore(MemoryImageStore):
    async def put(self, data, suggested_ext=""):
        raise RuntimeError("unexpected")


class TestAnimalEndpoint(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)
        self.store = MemoryImageStore()
        self.classifier = FakeClassifier()

        app.dependency_overrides[get_store] = lambda: self.store
        app.dependency_overrides[get_classifier] = lambda: self.classifier

    def tearDown(self):
        app.dependency_overrides = {}

    def post_image(self, name="photo.png", fmt="PNG", content_type="image/png"):
        return self.client.post(
            "/api/animal",
            files={"image": (name, make_image_bytes(fmt), content_type)},
        )

    def test_valid_upload_returns_scored_predictions(self):
        response = self.post_image()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()
        self.assertIsInstance(data, list)
        self.assertEqual(len(data), 3)
        for item in data:
            self.assertIn("class", item)
            self.assertGreaterEqual(item["score"], 0)
            self.assertLessEqual(item["score"], 1)

    def test_predictions_sorted_by_score_descending(self):
        response = self.post_image()

        data = response.json()
        self.assertEqual([p["class"] for p in data], ["dog", "cat", "fox"])

    def test_upload_is_stored_and_url_handed_to_classifier(self):
        self.post_image(name="photo.PNG")

        self.assertEqual(len(self.store.images), 1)
        filename = next(iter(self.store.images))
        self.assertTrue(filename.startswith("uploaded_image_"))
        self.assertTrue(filename.endswith(".png"))

        base = main.settings.public_base_url.rstrip("/")
        self.assertEqual(self.classifier.urls, [f"{base}/api/download/{filename}"])

    def test_missing_image_field_returns_400(self):
        response = self.client.post("/api/animal", data={"other": "value"})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json(), {"error": "No file uploaded"})
        self.assertEqual(self.classifier.urls, [])

    def test_empty_request_returns_400(self):
        response = self.client.post("/api/animal")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_non_image_payload_rejected(self):
        response = self.client.post(
            "/api/animal",
            files={"image": ("notes.png", b"definitely not an image", "image/png")},
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json(), {"error": "Invalid image file"})
        self.assertEqual(self.store.images, {})

    def test_disallowed_content_type_rejected(self):
        response = self.post_image(name="photo.png", content_type="text/plain")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("error", response.json())

    def test_webcam_capture_without_extension_gets_format_extension(self):
        self.post_image(name="capture", fmt="JPEG", content_type="application/octet-stream")

        filename = next(iter(self.store.images))
        self.assertTrue(filename.endswith(".jpg"))

    def test_upload_write_failure_returns_500(self):
        app.dependency_overrides[get_store] = lambda: BrokenStore()

        response = self.post_image()

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.json(), {"error": "File upload failed"})
        self.assertEqual(self.classifier.urls, [])

    def test_classification_failure_returns_json_error(self):
        app.dependency_overrides[get_classifier] = lambda: FailingClassifier()

        response = self.post_image()

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.json(), {"error": "Classification failed"})

    def test_unexpected_classifier_error_is_normalized(self):
        app.dependency_overrides[get_classifier] = lambda: FailingClassifier(RuntimeError("boom"))

        response = self.post_image()

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.json(), {"error": "Classification failed"})

    def test_same_file_twice_gets_distinct_names(self):
        self.post_image()
        self.post_image()

        self.assertEqual(len(self.store.images), 2)
        self.assertEqual(len(set(self.classifier.urls)), 2)

    def test_text_value_under_image_field_returns_400(self):
        response = self.client.post("/api/animal", data={"image": "hello"})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json(), {"error": "No file uploaded"})
        self.assertEqual(self.classifier.urls, [])

    def test_pixel_bomb_rejected_as_invalid_image(self):
        with patch("utils.helpers.Image.MAX_IMAGE_PIXELS", 100):
            response = self.post_image()

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.json(), {"error": "Invalid image file"})
        self.assertEqual(self.store.images, {})

    def test_unexpected_error_returns_json_500(self):
        app.dependency_overrides[get_store] = lambda: CrashingStore()
        client = TestClient(app, raise_server_exceptions=False)

        response = client.post(
            "/api/animal",
            files={"image": ("photo.png", make_image_bytes(), "image/png")},
        )

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.json(), {"error": "Internal server error"})

    def test_oversized_upload_rejected_before_reading(self):
        app.dependency_overrides[get_relay] = lambda: ClassificationRelay(
            self.store, self.classifier, "https://candy.test", "/api/download/", max_file_size=10
        )

        with patch.object(UploadFile, "read", new_callable=AsyncMock) as mock_read:
            response = self.post_image()

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("too large", response.json()["error"])
        mock_read.assert_not_awaited()
        self.assertEqual(self.store.images, {})
