class RelayError(Exception):
    """Base error for the upload/classify flow, rendered as {"error": message}"""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NoFileProvided(RelayError):
    status_code = 400
    default_message = "No file uploaded"


class InvalidImage(RelayError):
    status_code = 400
    default_message = "Invalid image file"


class UploadWriteFailure(RelayError):
    status_code = 500
    default_message = "File upload failed"


class ClassificationFailure(RelayError):
    status_code = 500
    default_message = "Classification failed"


class ImageNotFound(RelayError):
    status_code = 404
    default_message = "Image not found"


class MethodNotAllowed(RelayError):
    status_code = 405
    default_message = "Method not allowed"


class RateLimited(RelayError):
    status_code = 429
    default_message = "Rate limit exceeded"
