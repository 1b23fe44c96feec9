"""
Pydantic Models for API Request/Response Validation

These define the contract between the Streamlit front-end and the backend.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from enum import Enum
from typing import Literal


class CensorModeEnum(str, Enum):
    """Available censorship methods."""
    BLACK = "black"
    PIXELATED = "pixelated"


# ============================================================================
# Session Models
# ============================================================================

class StatusResponse(BaseModel):
    """Current state of the scan session."""
    status: str = Field(..., example="ready")
    message: str = Field(..., example="System ready. All target references loaded.")
    scan_enabled: bool
    target_acquired: bool
    censor_mode: CensorModeEnum
    files_loaded: int = Field(0, description="Number of images waiting to be scanned")
    reference_count: int = Field(0, description="Number of usable reference embeddings")


class CensorModeRequest(BaseModel):
    mode: CensorModeEnum


class FilesResponse(BaseModel):
    """Response after replacing the uploaded batch."""
    files_loaded: int
    filenames: List[str]
    scan_enabled: bool


# ============================================================================
# Scan Models
# ============================================================================

class ImageScanResult(BaseModel):
    """Verdict for one image of the batch."""
    index: int = Field(..., description="Position in upload order")
    filename: str
    status_text: str = Field(..., example="TARGET MATCHED")
    found_target: bool
    error: Optional[str] = None
    faces_detected: int = 0
    targets_in_image: int = 0
    processed_image: Optional[str] = Field(
        None,
        description="Base64-encoded censored PNG (absent when the image errored)"
    )


class ScanResponse(BaseModel):
    """Response from the batch scan endpoint."""
    status: str = Field(..., example="done_matches")
    total_targets: int = Field(..., description="Images in which the target was found")
    summary: str = Field(..., example="1 TARGET(S) CONFIRMED")
    message: str
    processing_time_ms: float = Field(..., description="Processing time in milliseconds")
    results: List[ImageScanResult]

    class Config:
        json_schema_extra = {
            "example": {
                "status": "done_matches",
                "total_targets": 1,
                "summary": "1 TARGET(S) CONFIRMED",
                "message": "Scan complete. 1 target(s) identified.",
                "processing_time_ms": 834.5,
                "results": [
                    {
                        "index": 0,
                        "filename": "beach.jpg",
                        "status_text": "TARGET MATCHED",
                        "found_target": True,
                        "faces_detected": 3,
                        "targets_in_image": 1,
                        "processed_image": "data:image/png;base64,..."
                    }
                ]
            }
        }


class UploadResponse(BaseModel):
    """Response from the temporary-host upload endpoint."""
    status: str = Field(..., example="success")
    url: str = Field(..., description="Public direct-download URL")
    filename: str


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., example="healthy")
    version: str = Field(..., example="1.0.0")
    face_detector_loaded: bool
    target_acquired: bool
    reference_count: int


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    status: Literal["error"] = "error"
    error_code: str
    message: str
    details: Optional[dict] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "error",
                "error_code": "SCAN_DISABLED",
                "message": "ERROR: Target acquisition failed. No faces were detected in any of the reference images.",
            }
        }


# Error codes
class ErrorCode:
    SCAN_DISABLED = "SCAN_DISABLED"
    SCAN_RUNNING = "SCAN_RUNNING"
    RESULT_NOT_FOUND = "RESULT_NOT_FOUND"
    UPLOAD_FAILED = "UPLOAD_FAILED"
