import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .types import STAGE_ORDER, StageInfo, StageName

logger = logging.getLogger(__name__)

DEFAULT_STAGES: Dict[StageName, StageInfo] = {
    StageName.UPLOAD: StageInfo(
        StageName.UPLOAD, "Image Upload", "Processing uploaded images", 1.0
    ),
    StageName.SEGMENTATION: StageInfo(
        StageName.SEGMENTATION, "Garment Segmentation",
        "Identifying garment boundaries using Grounding DINO + SAM", 3.0
    ),
    StageName.CONCEPT_GENERATION: StageInfo(
        StageName.CONCEPT_GENERATION, "Concept Generation",
        "Creating design variations with SDXL", 5.0
    ),
    StageName.PATTERN_DRAFTING: StageInfo(
        StageName.PATTERN_DRAFTING, "Pattern Drafting",
        "Generating sewing patterns with SewFormer", 4.0
    ),
    StageName.FIT_SIMULATION: StageInfo(
        StageName.FIT_SIMULATION, "3D Fit Simulation", "Running CLO 3D simulation", 4.0
    ),
    StageName.TECH_PACK: StageInfo(
        StageName.TECH_PACK, "Tech Pack Generation", "Creating technical specifications", 2.0
    ),
}


class StageCatalog:
    """Loads stage titles, descriptions and simulated durations from YAML."""

    def __init__(self, config_file: Path):
        self.config_file = Path(config_file)
        self._stages: Dict[StageName, StageInfo] = {}

        # Load immediately
        self.reload()

    def reload(self):
        """Reload the catalogue, falling back to built-in defaults per stage."""
        self._stages = dict(DEFAULT_STAGES)
        if not self.config_file.exists():
            logger.warning(f"Stage config not found: {self.config_file}, using defaults")
            return

        try:
            with open(self.config_file, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load stage config {self.config_file}: {e}")
            return

        stages = data.get("stages") if isinstance(data, dict) else None
        if not isinstance(stages, dict):
            logger.error(f"Stage config {self.config_file} has no 'stages' mapping, using defaults")
            return

        for name, stage_data in stages.items():
            try:
                stage_name = StageName(name)
            except ValueError:
                logger.warning(f"Ignoring unknown stage in config: {name}")
                continue
            if not isinstance(stage_data, dict):
                stage_data = {}
            self._stages[stage_name] = self._parse_stage(stage_name, stage_data)
        logger.info(f"Loaded stage catalogue from {self.config_file}")

    def _parse_stage(self, name: StageName, data: Dict[str, Any]) -> StageInfo:
        default = DEFAULT_STAGES[name]
        seconds = data.get("simulated_seconds", default.simulated_seconds)
        try:
            seconds = max(float(seconds), 0.0)
        except (TypeError, ValueError):
            logger.warning(f"Invalid simulated_seconds for stage {name.value}: {seconds!r}")
            seconds = default.simulated_seconds
        return StageInfo(
            name=name,
            title=data.get("title", default.title),
            description=data.get("description", default.description),
            simulated_seconds=seconds,
        )

    def get(self, name: StageName) -> StageInfo:
        return self._stages[StageName(name)]

    def all(self) -> List[StageInfo]:
        """Stages in pipeline order."""
        return [self._stages[name] for name in STAGE_ORDER]
