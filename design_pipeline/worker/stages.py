"""
Stage executors.

The vision and generative models behind each stage live outside this
service. Until they are wired in, every stage is a timed stand-in that
reports progress and returns a placeholder payload of the right shape.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, List

from pydantic import BaseModel

from design_pipeline.errors import StageError

from .stage_loader import StageCatalog
from .types import (
    ConceptGenerationResult,
    FitSimulationResult,
    PatternDraftingResult,
    PipelineStage,
    ProgressCallback,
    SegmentationResult,
    StageInputs,
    StageName,
    STAGE_ORDER,
    TechPackResult,
    UploadResult,
)

logger = logging.getLogger(__name__)

CONCEPT_COUNT = 4


def _result_path(job_id: str, filename: str) -> str:
    return f"results/{job_id}/{filename}"


def _upload_result(job_id: str, inputs: StageInputs) -> BaseModel:
    if not inputs.garment_image_path or not Path(inputs.garment_image_path).is_file():
        raise StageError("Garment image not found", stage=StageName.UPLOAD.value)
    if inputs.style_swatch_path and not Path(inputs.style_swatch_path).is_file():
        raise StageError("Style swatch image not found", stage=StageName.UPLOAD.value)
    return UploadResult(
        garment_image_url=inputs.garment_image_path,
        style_swatch_url=inputs.style_swatch_path,
    )


def _segmentation_result(job_id: str, inputs: StageInputs) -> BaseModel:
    return SegmentationResult(mask_url=_result_path(job_id, "segmentation_mask.png"))


def _concept_result(job_id: str, inputs: StageInputs) -> BaseModel:
    return ConceptGenerationResult(
        concept_urls=[_result_path(job_id, f"concept_{i}.png") for i in range(1, CONCEPT_COUNT + 1)],
        prompt=inputs.design_prompt,
    )


def _pattern_result(job_id: str, inputs: StageInputs) -> BaseModel:
    return PatternDraftingResult(pattern_url=_result_path(job_id, "pattern.svg"), piece_count=6)


def _fit_result(job_id: str, inputs: StageInputs) -> BaseModel:
    return FitSimulationResult(simulation_url=_result_path(job_id, "fit_simulation.glb"), fit_score=0.9)


def _tech_pack_result(job_id: str, inputs: StageInputs) -> BaseModel:
    return TechPackResult(tech_pack_url=_result_path(job_id, "tech_pack.pdf"))


RESULT_BUILDERS: Dict[StageName, Callable[[str, StageInputs], BaseModel]] = {
    StageName.UPLOAD: _upload_result,
    StageName.SEGMENTATION: _segmentation_result,
    StageName.CONCEPT_GENERATION: _concept_result,
    StageName.PATTERN_DRAFTING: _pattern_result,
    StageName.FIT_SIMULATION: _fit_result,
    StageName.TECH_PACK: _tech_pack_result,
}


class SimulatedStage:
    """Waits ``duration`` seconds in ``ticks`` steps, reporting progress, then returns a placeholder result."""

    def __init__(
        self,
        name: StageName,
        duration: float = 0.0,
        ticks: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if ticks < 1:
            raise ValueError("ticks must be at least 1")
        self.name = StageName(name)
        self.duration = duration
        self.ticks = ticks
        self._sleep = sleep

    def execute(self, job_id: str, inputs: StageInputs, report_progress: ProgressCallback) -> BaseModel:
        interval = self.duration / self.ticks
        for tick in range(1, self.ticks):
            if interval:
                self._sleep(interval)
            report_progress(tick * 100 // self.ticks)
        if interval:
            self._sleep(interval)
        return RESULT_BUILDERS[self.name](job_id, inputs)


def build_default_stages(catalog: StageCatalog, delay_scale: float = 1.0) -> List[PipelineStage]:
    """Build the six simulated stages with durations from the catalogue."""
    stages = []
    for name in STAGE_ORDER:
        info = catalog.get(name)
        stages.append(PipelineStage(
            name=name,
            executor=SimulatedStage(name, duration=info.simulated_seconds * delay_scale),
            title=info.title,
            description=info.description,
        ))
    return stages
