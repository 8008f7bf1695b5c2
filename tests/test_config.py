"""
Configuration tests.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from design_pipeline.config import Config, get_config


def test_config_defaults():
    config = Config(_env_file=None)
    assert config.upload_dir == Path("uploads")
    assert config.worker_mode == "external"
    assert config.notifier_backend == "redis"
    assert config.max_image_bytes == 10 * 1024 * 1024
    assert ".png" in config.supported_image_formats


def test_get_config_is_cached():
    assert get_config() is get_config()


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("WORKER_MODE", "inline")
    monkeypatch.setenv("NOTIFIER_BACKEND", "memory")
    monkeypatch.setenv("SUPPORTED_IMAGE_FORMATS", '["PNG", "jpg"]')
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = Config(_env_file=None)

    assert config.worker_mode == "inline"
    assert config.notifier_backend == "memory"
    assert config.supported_image_formats == [".png", ".jpg"]
    assert config.log_level == "DEBUG"


def test_comma_separated_lists(monkeypatch):
    monkeypatch.setenv("SUPPORTED_IMAGE_FORMATS", "png, JPG")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test,http://b.test")

    config = Config(_env_file=None)

    assert config.supported_image_formats == [".png", ".jpg"]
    assert config.cors_origins == ["http://a.test", "http://b.test"]


def test_single_origin(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "https://designs.example.com")
    assert Config(_env_file=None).cors_origins == ["https://designs.example.com"]


def test_malformed_json_list_rejected(monkeypatch):
    monkeypatch.setenv("SUPPORTED_IMAGE_FORMATS", "[png")
    with pytest.raises(ValidationError):
        Config(_env_file=None)


def test_invalid_values_rejected(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "loud")
    with pytest.raises(ValidationError):
        Config(_env_file=None)


def test_negative_delay_scale_rejected():
    with pytest.raises(ValidationError):
        Config(_env_file=None, stage_delay_scale=-1)


def test_ensure_directories(tmp_path):
    config = Config(
        _env_file=None,
        upload_dir=tmp_path / "uploads",
        database_url=f"sqlite:///{tmp_path}/data/designs.db",
    )
    config.ensure_directories()
    assert (tmp_path / "uploads").is_dir()
    assert (tmp_path / "data").is_dir()
