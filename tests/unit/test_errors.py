import pytest
from batchpress.domain.errors import (
    BatchValidationError,
    BatchpressError,
    UnknownPresetError,
    classify_encoder_error,
)


@pytest.mark.parametrize("detail,category,recoverable", [
    ("cancelled", "cancellation", True),
    ("Error initializing videotoolbox encoder", "hardware", True),
    ("clip.mp4: No such file or directory", "validation", False),
    ("Permission denied", "system", False),
    ("No space left on device", "system", False),
    ("Unknown encoder 'libfoo'", "ffmpeg", True),
    ("Invalid data found when processing input", "ffmpeg", False),
    ("ffmpeg exited with code 187", "ffmpeg", True),
    ("something strange", "unknown", True),
])
def test_classify_encoder_error(detail, category, recoverable):
    error = classify_encoder_error(detail, "clip.mp4")
    assert error.category == category
    assert error.recoverable is recoverable
    assert error.details == detail


def test_classify_encoder_error_names_file():
    error = classify_encoder_error("Invalid data found when processing input", "clip.mp4")
    assert "clip.mp4" in error.message
    assert error.suggested_action


def test_classify_encoder_error_handles_empty_detail():
    assert classify_encoder_error("", "clip.mp4").category == "unknown"


def test_error_hierarchy():
    assert issubclass(UnknownPresetError, BatchpressError)
    err = BatchValidationError("first", ["first", "second"])
    assert str(err) == "first"
    assert err.problems == ["first", "second"]
    assert BatchValidationError("only").problems == []
