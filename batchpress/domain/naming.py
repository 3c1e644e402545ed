"""Output naming rule shared by conflict detection and encoding.

Both the Conflict Resolver and the Orchestrator (which hands the path to
the encoder) must go through `build_output_path`; any second copy of this
logic would make conflict detection disagree with what actually gets
written.
"""

from pathlib import Path
from typing import Optional

WEBM_CODECS = {"libvpx-vp9", "libvpx", "vp9"}


def output_extension_for_codec(video_codec: Optional[str]) -> str:
    """Container extension (without dot) for a video codec."""
    if video_codec and video_codec.lower() in WEBM_CODECS:
        return "webm"
    return "mp4"


def build_output_path(
    file_path: Path,
    output_directory: Path,
    folder_name: str,
    file_suffix: str,
    video_codec: Optional[str],
    keep_audio: bool,
    muted_suffix: str = "",
    custom_output_name: Optional[str] = None,
) -> Path:
    """Returns ``<output>/<preset folder>/<stem><suffix><audio suffix>.<ext>``.

    A custom output name replaces the whole file name; its own extension is
    dropped and the codec's extension is used instead.
    """
    extension = output_extension_for_codec(video_codec)
    target_dir = Path(output_directory) / folder_name if folder_name else Path(output_directory)

    if custom_output_name and custom_output_name.strip():
        custom_stem = Path(custom_output_name.strip()).name
        if Path(custom_stem).suffix.lower() in {".mp4", ".webm", ".mov", ".mkv"}:
            custom_stem = Path(custom_stem).stem
        return target_dir / f"{custom_stem}.{extension}"

    audio_suffix = "" if keep_audio else muted_suffix
    stem = Path(file_path).stem
    return target_dir / f"{stem}{file_suffix}{audio_suffix}.{extension}"


def partial_output_path(output_path: Path) -> Path:
    """Where the encoder writes before renaming onto ``output_path``."""
    return Path(output_path).with_suffix(".tmp")
