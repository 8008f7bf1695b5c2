from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter


class Status(str, Enum):
    """Status shared by jobs and steps."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.COMPLETED, Status.ERROR)


class StageName(str, Enum):
    UPLOAD = "upload"
    SEGMENTATION = "segmentation"
    CONCEPT_GENERATION = "concept_generation"
    PATTERN_DRAFTING = "pattern_drafting"
    FIT_SIMULATION = "fit_simulation"
    TECH_PACK = "tech_pack"


# Pipeline order. Step identity and position never change after job creation.
STAGE_ORDER: List[StageName] = list(StageName)
STAGE_NAMES: List[str] = [stage.value for stage in STAGE_ORDER]


# Per-stage result payloads, discriminated on ``stage``.

class UploadResult(BaseModel):
    stage: Literal["upload"] = "upload"
    garment_image_url: str
    style_swatch_url: Optional[str] = None


class SegmentationResult(BaseModel):
    stage: Literal["segmentation"] = "segmentation"
    mask_url: str
    garment_label: str = "garment"


class ConceptGenerationResult(BaseModel):
    stage: Literal["concept_generation"] = "concept_generation"
    concept_urls: List[str]
    prompt: str


class PatternDraftingResult(BaseModel):
    stage: Literal["pattern_drafting"] = "pattern_drafting"
    pattern_url: str
    piece_count: int = 0


class FitSimulationResult(BaseModel):
    stage: Literal["fit_simulation"] = "fit_simulation"
    simulation_url: str
    fit_score: float = 0.0


class TechPackResult(BaseModel):
    stage: Literal["tech_pack"] = "tech_pack"
    tech_pack_url: str


StageResult = Annotated[
    Union[
        UploadResult,
        SegmentationResult,
        ConceptGenerationResult,
        PatternDraftingResult,
        FitSimulationResult,
        TechPackResult,
    ],
    Field(discriminator="stage"),
]

stage_result_adapter: TypeAdapter = TypeAdapter(StageResult)


def parse_stage_result(data: Dict[str, Any]) -> BaseModel:
    """Rebuild a typed stage result from its stored JSON form."""
    return stage_result_adapter.validate_python(data)


ProgressCallback = Callable[[int], None]


@dataclass
class StageInputs:
    """Everything a stage executor may read for one job."""
    design_prompt: str
    garment_image_path: Optional[str] = None
    style_swatch_path: Optional[str] = None
    previous_results: Dict[str, BaseModel] = field(default_factory=dict)


class StageExecutor(Protocol):
    """Capability implementing one pipeline stage.

    Raises StageError on failure. May call ``report_progress`` with 0-100
    while running.
    """

    def execute(self, job_id: str, inputs: StageInputs, report_progress: ProgressCallback) -> BaseModel:
        ...


@dataclass
class PipelineStage:
    """Defines a single stage in the design pipeline."""
    name: StageName
    executor: StageExecutor
    title: str = ""
    description: str = ""


@dataclass
class StageInfo:
    """Catalogue entry describing a stage, loaded from YAML."""
    name: StageName
    title: str
    description: str = ""
    simulated_seconds: float = 0.0
