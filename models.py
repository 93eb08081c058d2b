import json
from typing import Any
from typing import Literal
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

INPUT_PLACEHOLDER = "$INPUT"


class ScanRequest(BaseModel):
    name: str = Field(..., min_length=1, examples=["chatbot-prod"])
    uri: str = Field(..., examples=["https://api.example.com/v1/chat"])
    method: Literal["GET", "POST"] = Field(..., examples=["POST"])
    headers: dict[str, str] = Field(..., examples=[{"Content-Type": "application/json"}])
    body_template: dict[str, Any] = Field(..., examples=[{"prompt": INPUT_PLACEHOLDER}])
    response_field: str = Field(..., examples=["output", "$.choices[0].text"])
    api_key: Optional[str] = None
    probes: Optional[list[str]] = None
    detectors: Optional[list[str]] = None

    @field_validator("method", mode="before")
    @classmethod
    def _uppercase_method(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("uri")
    @classmethod
    def _require_http_uri(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("uri must be an absolute http(s) URL")
        return value

    @field_validator("body_template")
    @classmethod
    def _require_placeholder(cls, value: dict[str, Any]) -> dict[str, Any]:
        if INPUT_PLACEHOLDER not in json.dumps(value):
            raise ValueError(f"body_template must contain {INPUT_PLACEHOLDER} placeholder")
        return value

    @field_validator("response_field")
    @classmethod
    def _require_response_path(cls, value: str) -> str:
        if not value.strip() or value.strip() == "$":
            raise ValueError("response_field must name a path in the JSON response")
        return value


class ScanSummary(BaseModel):
    total_attempts: int
    passed: int
    failed: int


class AttemptRecord(BaseModel):
    # Garak owns the record shape; only the verdict is guaranteed.
    model_config = ConfigDict(extra="allow")

    passed: bool


class ScanReport(BaseModel):
    scan_summary: ScanSummary
    detailed_results: list[AttemptRecord] = []


class ScanSuccessResponse(BaseModel):
    success: bool = True
    scan_id: str
    name: str
    status: str = "completed"
    timestamp: str
    report: ScanReport


class ScanFailureResponse(BaseModel):
    success: bool = False
    scan_id: str
    name: str
    status: str = "failed"
    timestamp: str
    error: str
    report: None = None


class ValidationErrorResponse(BaseModel):
    success: bool = False
    error: str = "Validation failed"
    details: list[str] = []


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: str
    version: str
    active_scans: int
