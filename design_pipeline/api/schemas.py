"""
Pydantic schemas for job records, notifications and API responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StepRecord(BaseModel):
    """One pipeline step as stored and broadcast."""
    model_config = ConfigDict(from_attributes=True)

    name: str
    position: int
    status: str
    progress: int = 0
    result_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobRecord(BaseModel):
    """
    Full job record.

    This is also the payload of every change notification, so subscribers
    always receive complete state rather than a diff.
    """
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: str
    design_prompt: str
    current_step_index: int = 0
    steps: List[StepRecord] = Field(default_factory=list)
    garment_image_path: Optional[str] = None
    style_swatch_path: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    def step(self, name: str) -> Optional[StepRecord]:
        for step in self.steps:
            if step.name == name:
                return step
        return None


class JobResponse(JobRecord):
    """Response model for job details."""
    overall_progress: int = 0


class JobListResponse(BaseModel):
    """Response model for paginated job list."""
    jobs: List[JobResponse]
    total: int
    limit: int
    offset: int


class StageInfoResponse(BaseModel):
    """Information about a single pipeline stage."""
    name: str
    position: int
    title: str
    description: Optional[str] = None


# Health Check Schemas
class HealthCheckResponse(BaseModel):
    """Response model for health check."""
    status: str
    service: str
    checks: Dict[str, bool]
    timestamp: datetime


class ReadinessCheckResponse(BaseModel):
    """Response model for readiness check."""
    ready: bool
    checks: Dict[str, bool]
    worker_mode: str
