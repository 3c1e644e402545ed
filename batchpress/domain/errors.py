from typing import List, Optional
from pydantic import BaseModel


class BatchpressError(Exception):
    """Base class for errors raised by batchpress."""


class UnknownPresetError(BatchpressError):
    def __init__(self, preset_id: str):
        super().__init__(f"Unknown preset: {preset_id}")
        self.preset_id = preset_id


class BatchValidationError(BatchpressError):
    """A batch request was rejected before any task was created."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = problems or []


class EncoderError(BaseModel):
    category: str
    message: str
    details: Optional[str] = None
    recoverable: bool = True
    suggested_action: Optional[str] = None


# (category, needles, message template, recoverable, suggested action); first match wins
_RULES = [
    ("cancellation", ("cancelled",), "Compression cancelled for {name}", True,
     "You can restart the compression when ready."),
    ("hardware", ("videotoolbox", "hardware", "nvenc", "vaapi"),
     "Hardware acceleration not available for {name}", True,
     "Try a preset with a software codec such as libx264."),
    ("validation", ("no such file", "file not found", "does not exist"),
     "Input file not found: {name}", False, "Select a valid video file."),
    ("system", ("permission denied", "access denied"),
     "Permission denied for {name}", False,
     "Check file permissions or choose a different location."),
    ("system", ("no space", "disk full"), "Insufficient disk space", False,
     "Free up disk space or choose a different output location."),
    ("ffmpeg", ("unknown encoder", "codec", "encoder"), "Codec error for {name}", True,
     "Try a different preset or codec."),
    ("ffmpeg", ("invalid data", "format", "container", "moov atom"),
     "Unsupported format for {name}", False,
     "Convert the video to a supported format first."),
]


def classify_encoder_error(detail: str, file_name: str = "file") -> EncoderError:
    """Turns raw encoder output into a user-facing error."""
    lowered = (detail or "").lower()
    for category, needles, template, recoverable, action in _RULES:
        if any(needle in lowered for needle in needles):
            return EncoderError(
                category=category,
                message=template.format(name=file_name),
                details=detail,
                recoverable=recoverable,
                suggested_action=action,
            )
    if "ffmpeg" in lowered or "exited with code" in lowered:
        return EncoderError(
            category="ffmpeg",
            message=f"Compression failed for {file_name}",
            details=detail,
            suggested_action="Try different compression settings or check the video file.",
        )
    return EncoderError(category="unknown", message=f"Compression failed for {file_name}", details=detail)
