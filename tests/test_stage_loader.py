"""
Stage catalogue loading tests.
"""

from pathlib import Path

from design_pipeline.worker.stage_loader import DEFAULT_STAGES, StageCatalog
from design_pipeline.worker.types import STAGE_ORDER, StageName

REPO_STAGES = Path(__file__).parent.parent / "config" / "stages.yaml"


def test_missing_file_uses_defaults(tmp_path):
    catalog = StageCatalog(tmp_path / "missing.yaml")
    assert [info.name for info in catalog.all()] == STAGE_ORDER
    assert catalog.get(StageName.SEGMENTATION) == DEFAULT_STAGES[StageName.SEGMENTATION]


def test_repo_catalogue_loads():
    catalog = StageCatalog(REPO_STAGES)
    assert len(catalog.all()) == 6
    assert catalog.get("tech_pack").title == "Tech Pack Generation"


def test_overrides_and_unknown_stages(tmp_path):
    config_file = tmp_path / "stages.yaml"
    config_file.write_text(
        "stages:\n"
        "  segmentation:\n"
        "    title: Cut-out\n"
        "    simulated_seconds: 0.5\n"
        "  dyeing:\n"
        "    title: Dyeing\n"
    )

    catalog = StageCatalog(config_file)

    segmentation = catalog.get(StageName.SEGMENTATION)
    assert segmentation.title == "Cut-out"
    assert segmentation.simulated_seconds == 0.5
    assert segmentation.description == DEFAULT_STAGES[StageName.SEGMENTATION].description
    assert [info.name for info in catalog.all()] == STAGE_ORDER


def test_invalid_duration_falls_back(tmp_path):
    config_file = tmp_path / "stages.yaml"
    config_file.write_text("stages:\n  upload:\n    simulated_seconds: soon\n")

    catalog = StageCatalog(config_file)
    assert catalog.get("upload").simulated_seconds == DEFAULT_STAGES[StageName.UPLOAD].simulated_seconds


def test_reload_picks_up_changes(tmp_path):
    config_file = tmp_path / "stages.yaml"
    config_file.write_text("stages:\n  upload:\n    title: First\n")
    catalog = StageCatalog(config_file)

    config_file.write_text("stages:\n  upload:\n    title: Second\n")
    catalog.reload()

    assert catalog.get("upload").title == "Second"


def test_broken_yaml_uses_defaults(tmp_path):
    config_file = tmp_path / "stages.yaml"
    config_file.write_text("stages: [unclosed\n")

    catalog = StageCatalog(config_file)
    assert catalog.get("upload") == DEFAULT_STAGES[StageName.UPLOAD]
