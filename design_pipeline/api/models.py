import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    """Timezone-aware current time; datetime columns reject naive values."""
    return datetime.now(timezone.utc)


class DesignJob(SQLModel, table=True):
    __tablename__ = "design_job"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    status: str = Field(default="pending", index=True)  # pending, processing, completed, error
    design_prompt: str
    current_step_index: int = 0
    garment_image_path: Optional[str] = None
    style_swatch_path: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    # Relationship
    steps: List["DesignStep"] = Relationship(
        back_populates="job",
        sa_relationship_kwargs={"order_by": "DesignStep.position", "cascade": "all, delete-orphan"},
    )


class DesignStep(SQLModel, table=True):
    __tablename__ = "design_step"

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: str = Field(foreign_key="design_job.id", index=True)
    name: str  # e.g. "segmentation", "tech_pack"
    position: int
    status: str = "pending"  # pending, processing, completed, error
    progress: int = 0
    result_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Relationship
    job: DesignJob = Relationship(back_populates="steps")
