import os
from pathlib import Path
from typing import Dict, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from batchpress.domain.errors import UnknownPresetError
from batchpress.domain.models import PresetConfig
from batchpress.domain.naming import build_output_path


def _default_concurrency() -> int:
    cpus = os.cpu_count() or 1
    return max(1, min(4, cpus - 1))


class EncodingParams(BaseModel):
    """Opaque parameter bag handed to the encoder; the orchestrator never reads it."""
    video_codec: str = "libx264"
    video_bitrate: Optional[str] = "1000k"
    audio_codec: str = "aac"
    audio_bitrate: Optional[str] = "64k"
    resolution: Optional[str] = "1280x720"
    fps: Optional[float] = Field(default=30, gt=0)
    crf: Optional[int] = Field(default=27, ge=0, le=63)
    preset: Optional[str] = "medium"
    preserve_aspect_ratio: bool = True
    fast_start: bool = True

    @field_validator("resolution")
    @classmethod
    def validate_resolution(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parts = v.lower().split("x")
        if len(parts) != 2 or not all(p.isdigit() and int(p) > 0 for p in parts):
            raise ValueError(f"Invalid resolution {v!r}. Use WIDTHxHEIGHT, e.g. 1280x720.")
        return v.lower()


class PresetDefinition(BaseModel):
    name: str
    folder_name: str
    file_suffix: str = ""
    default_keep_audio: bool = True
    description: str = ""
    params: EncodingParams = Field(default_factory=EncodingParams)


def _preset(name, folder, suffix, keep_audio, description, **params) -> PresetDefinition:
    return PresetDefinition(
        name=name,
        folder_name=folder,
        file_suffix=suffix,
        default_keep_audio=keep_audio,
        description=description,
        params=EncodingParams(**params),
    )


def default_presets() -> Dict[str, PresetDefinition]:
    return {
        "web-hero": _preset(
            "Web Hero", "Web Hero", " - Hero", True,
            "High quality for hero sections and main content",
            video_bitrate="2500k", audio_bitrate="128k", resolution="1920x1080", crf=23, preset="slow",
        ),
        "web-standard": _preset(
            "Web Standard", "Web Standard", " - Web", True,
            "Balanced quality and file size for web pages",
            video_bitrate="1000k", resolution="1280x720", crf=27,
        ),
        "web-mobile": _preset(
            "Web Mobile", "Web Mobile", " - Mobile", True,
            "Optimized for mobile devices and slower connections",
            video_bitrate="600k", audio_bitrate="48k", resolution="854x480", crf=30, preset="fast",
        ),
        "social-instagram": _preset(
            "Instagram", "Instagram", " - IG", True,
            "Optimized for Instagram feed and stories",
            video_bitrate="3500k", audio_bitrate="128k", resolution="1080x1920", crf=23,
        ),
        "social-tiktok": _preset(
            "TikTok", "TikTok", " - TikTok", True,
            "Optimized for TikTok and vertical video platforms",
            video_bitrate="2500k", audio_bitrate="128k", resolution="1080x1920", crf=24,
        ),
        "webm-modern": _preset(
            "WebM Modern", "WebM Modern", " - WebM", True,
            "Modern WebM format with VP9 for better compression",
            video_codec="libvpx-vp9", video_bitrate="1200k", audio_codec="libopus", crf=30, preset="good",
            fast_start=False,
        ),
        "hevc-efficient": _preset(
            "HEVC Efficient", "HEVC Efficient", " - HEVC", True,
            "H.265/HEVC for maximum compression efficiency",
            video_codec="libx265", video_bitrate="800k", crf=28,
        ),
        "thumbnail-preview": _preset(
            "Thumbnail", "Thumbnail Preview", " - Thumb", False,
            "Small file size for thumbnails and previews",
            video_bitrate="300k", audio_bitrate="48k", resolution="640x360", fps=24, crf=32, preset="ultrafast",
        ),
        "ultra-compressed": _preset(
            "Ultra Compressed", "Ultra Compressed", " - Compressed", False,
            "Maximum compression for minimal file size",
            video_codec="libx265", video_bitrate="400k", audio_bitrate="32k", resolution="854x480",
            fps=24, crf=32, preset="slow",
        ),
    }


class GeneralConfig(BaseModel):
    max_concurrency: int = Field(default_factory=_default_concurrency, ge=1, le=6)
    max_videos_per_batch: int = Field(default=10, ge=1, le=20)
    max_tasks_per_batch: int = Field(default=500, ge=1)
    large_batch_warning: int = Field(default=20, ge=1)
    output_directory: Optional[str] = None
    muted_suffix: str = " - Muted"
    log_path: Optional[str] = None
    debug: bool = False


class ThermalConfig(BaseModel):
    enabled: bool = False  # off by default; telemetry is advisory
    reduce_threshold: float = Field(default=70.0, ge=0.0, le=100.0)
    critical_threshold: float = Field(default=90.0, ge=0.0, le=100.0)
    pause_on_overheat: bool = True
    max_cpu_usage: float = Field(default=85.0, ge=0.0, le=100.0)
    sample_interval_s: float = Field(default=15.0, ge=0.1)

    @model_validator(mode="after")
    def validate_thresholds(self):
        if self.reduce_threshold >= self.critical_threshold:
            raise ValueError("reduce_threshold must be < critical_threshold")
        return self


class EncoderConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    terminate_grace_s: float = Field(default=3.0, gt=0)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    thermal: ThermalConfig = Field(default_factory=ThermalConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    presets: Dict[str, PresetDefinition] = Field(default_factory=default_presets)

    def get_preset(self, preset_id: str) -> PresetDefinition:
        try:
            return self.presets[preset_id]
        except KeyError:
            raise UnknownPresetError(preset_id) from None

    def output_path_for(
        self,
        file_path: Path,
        preset_config: PresetConfig,
        output_directory: Path,
        custom_output_name: Optional[str] = None,
    ) -> Path:
        """Destination for one (file, preset) pair; the single naming entry point."""
        preset = self.get_preset(preset_config.preset_id)
        return build_output_path(
            file_path,
            output_directory,
            folder_name=preset.folder_name,
            file_suffix=preset.file_suffix,
            video_codec=preset.params.video_codec,
            keep_audio=preset_config.keep_audio,
            muted_suffix=self.general.muted_suffix,
            custom_output_name=custom_output_name,
        )
