from pydantic import BaseModel
from typing import Any, Literal, Optional

JobStatus = Literal["QUEUED", "IN_PROGRESS", "COMPLETED", "FAILED"]

class JobState(BaseModel):
    id: str
    # Unknown statuses are kept as-is and treated like IN_PROGRESS by the poller.
    status: str = "IN_PROGRESS"
    output: Optional[Any] = None

class UploadedAsset(BaseModel):
    path: str
    filename: str
    content_type: Optional[str] = None

class StagedUpload(BaseModel):
    url: str
    key: str
    content_type: str

class RelayEndpoint(BaseModel):
    path: str
    content_type: str
    timeout_sec: float
    file_field: str = "file"
    extra_field: Optional[str] = None
    extra_default: Optional[str] = None

class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None

class HealthResponse(BaseModel):
    ok: bool = True

class PingResponse(BaseModel):
    ok: bool
    path: str
    backend_status: int
    backend: Any = None

class RelayResult(BaseModel):
    status_code: int
    body: bytes
    content_type: str
