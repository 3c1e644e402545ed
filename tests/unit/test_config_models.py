import pytest
from pathlib import Path
from pydantic import ValidationError
from batchpress.config.loader import load_config
from batchpress.config.models import (
    AppConfig,
    EncodingParams,
    GeneralConfig,
    ThermalConfig,
    default_presets,
)
from batchpress.domain.errors import UnknownPresetError


def test_valid_config():
    data = {
        "general": {"max_concurrency": 4, "max_videos_per_batch": 12},
        "thermal": {"enabled": True, "reduce_threshold": 60, "critical_threshold": 85},
    }
    config = AppConfig(**data)
    assert config.general.max_concurrency == 4
    assert config.general.max_videos_per_batch == 12
    assert config.thermal.critical_threshold == 85


def test_config_defaults():
    config = AppConfig()
    assert 1 <= config.general.max_concurrency <= 4
    assert config.general.max_videos_per_batch == 10
    assert config.general.max_tasks_per_batch == 500
    assert config.general.large_batch_warning == 20
    assert config.general.muted_suffix == " - Muted"
    assert config.thermal.enabled is False
    assert config.encoder.ffmpeg_path == "ffmpeg"
    assert set(config.presets) == set(default_presets())


def test_invalid_concurrency():
    with pytest.raises(ValidationError):
        GeneralConfig(max_concurrency=0)
    with pytest.raises(ValidationError):
        GeneralConfig(max_concurrency=7)


def test_invalid_videos_per_batch():
    with pytest.raises(ValidationError):
        GeneralConfig(max_videos_per_batch=21)


def test_thermal_thresholds_must_be_ordered():
    with pytest.raises(ValidationError):
        ThermalConfig(reduce_threshold=90, critical_threshold=80)


def test_encoding_params_resolution_validation():
    assert EncodingParams(resolution="1920X1080").resolution == "1920x1080"
    assert EncodingParams(resolution=None).resolution is None
    with pytest.raises(ValidationError):
        EncodingParams(resolution="1080p")


def test_encoding_params_crf_range():
    with pytest.raises(ValidationError):
        EncodingParams(crf=64)


def test_default_presets_cover_codecs_and_audio():
    presets = default_presets()
    assert presets["webm-modern"].params.video_codec == "libvpx-vp9"
    assert presets["hevc-efficient"].params.video_codec == "libx265"
    assert presets["thumbnail-preview"].default_keep_audio is False
    assert presets["web-hero"].default_keep_audio is True


def test_get_preset_unknown_raises():
    config = AppConfig()
    with pytest.raises(UnknownPresetError) as exc:
        config.get_preset("nope")
    assert exc.value.preset_id == "nope"


def test_load_config_from_yaml(config_yaml_path):
    config = load_config(config_yaml_path)

    assert config.general.max_concurrency == 3
    assert config.general.max_videos_per_batch == 5
    assert config.general.muted_suffix == " (silent)"
    assert config.general.debug is True
    assert config.thermal.enabled is True
    assert config.thermal.reduce_threshold == 60
    assert config.encoder.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"


def test_load_config_merges_preset_overrides(config_yaml_path):
    config = load_config(config_yaml_path)

    web = config.presets["web-standard"]
    assert web.params.crf == 22
    # Untouched fields keep their built-in values
    assert web.folder_name == "Web Standard"
    assert web.params.video_bitrate == "1000k"

    assert config.presets["archive"].params.crf == 18
    assert "web-hero" in config.presets


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_load_config_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    config = load_config(path)
    assert config.general.max_videos_per_batch == 10


def test_shipped_config_is_valid():
    repo_root = Path(__file__).resolve().parents[2]
    config = load_config(repo_root / "conf" / "batchpress.yaml")
    assert config.general.max_concurrency == 3
    assert "archive-1080p" in config.presets
