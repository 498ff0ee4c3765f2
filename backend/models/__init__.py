from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Prediction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str = Field(alias="class")
    score: float = Field(ge=0.0, le=1.0)

class StoredImage(BaseModel):
    filename: str
    path: Optional[str] = None  # None for in-memory stores
    size: int = 0

class ErrorResponse(BaseModel):
    error: str

class HealthResponse(BaseModel):
    status: str
    backend_status: str
    classifier_status: dict
    response_time: float
    timestamp: str

class Settings(BaseModel):
    app_name: str = "Animal Face Analyzer"
    is_production: bool = False
    upload_dir: str
    public_base_url: str = "https://candy.blbt.app"
    download_path: str = "/api/download/"
    classifier_endpoint_url: str = ""
    classifier_model_url: str = "https://teachablemachine.withgoogle.com/models/bB3YHn5r/"
    use_mock_classifier: bool = True
    request_timeout: float = 60.0
    max_file_size: int = 10 * 1024 * 1024
    cors_origins: List[str] = ["http://localhost:3000"]
    rate_limit_requests: int = 0  # 0 disables the limiter
    rate_limit_window: int = 3600
