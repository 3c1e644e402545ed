"""Plan expansion and validation."""
import pytest
from pathlib import Path

from batchpress.config.models import AppConfig
from batchpress.domain.errors import BatchValidationError
from batchpress.domain.models import BatchPlan, PresetConfig
from batchpress.pipeline.planning import (
    expand_plan,
    find_output_collisions,
    unique_files,
    unique_presets,
    validate_plan,
)


def test_expand_plan_is_files_times_presets(sample_config, source_files, make_plan):
    planned = expand_plan(make_plan(source_files, ["web-hero", "web-mobile"]), sample_config)

    assert [p.task_key for p in planned] == [
        "a.mp4::web-hero", "a.mp4::web-mobile",
        "b.mov::web-hero", "b.mov::web-mobile",
        "c.mp4::web-hero", "c.mp4::web-mobile",
    ]


def test_expand_plan_deduplicates(sample_config, source_files, make_plan):
    plan = make_plan([source_files[0], source_files[0]], ["web-hero", "web-hero"])
    assert len(expand_plan(plan, sample_config)) == 1


def test_expand_plan_honours_custom_output_name(sample_config, source_files, make_plan, output_dir):
    plan = make_plan(source_files[:1], ["web-hero"], custom_output_names={source_files[0]: "landing"})
    planned = expand_plan(plan, sample_config)
    assert planned[0].output_path == output_dir / "Web Hero" / "landing.mp4"


def test_unique_presets_later_entry_wins():
    presets = unique_presets([
        PresetConfig(preset_id="web-hero", keep_audio=True),
        PresetConfig(preset_id="web-mobile"),
        PresetConfig(preset_id="web-hero", keep_audio=False),
    ])
    assert [p.preset_id for p in presets] == ["web-hero", "web-mobile"]
    assert presets[0].keep_audio is False


def test_unique_files_keeps_order():
    assert unique_files([Path("b"), Path("a"), Path("b")]) == [Path("b"), Path("a")]


def test_validate_plan_accepts_good_plan(sample_config, source_files, make_plan):
    validate_plan(make_plan(source_files, ["web-hero"]), sample_config)


def test_validate_plan_rejects_empty_selection(sample_config, output_dir):
    with pytest.raises(BatchValidationError) as exc:
        validate_plan(BatchPlan(files=[], presets=[], output_directory=output_dir), sample_config)
    assert "No source files selected." in exc.value.problems
    assert "No presets selected." in exc.value.problems


def test_validate_plan_rejects_too_many_videos(source_files, make_plan):
    config = AppConfig(general={"max_videos_per_batch": 2})
    with pytest.raises(BatchValidationError) as exc:
        validate_plan(make_plan(source_files), config)
    assert "Too many videos selected (3)" in str(exc.value)


def test_validate_plan_rejects_too_many_tasks(source_files, make_plan):
    config = AppConfig(general={"max_tasks_per_batch": 5})
    with pytest.raises(BatchValidationError) as exc:
        validate_plan(make_plan(source_files, ["web-hero", "web-mobile"]), config)
    assert "Too many compression tasks (6)" in str(exc.value)


def test_validate_plan_skipped_tasks_do_not_count(source_files, make_plan):
    config = AppConfig(general={"max_tasks_per_batch": 5})
    plan = make_plan(source_files, ["web-hero", "web-mobile"], skipped_keys={"a.mp4::web-hero"})
    validate_plan(plan, config)


def test_validate_plan_rejects_unknown_preset(sample_config, source_files, make_plan):
    with pytest.raises(BatchValidationError) as exc:
        validate_plan(make_plan(source_files, ["web-hero", "vhs-tape"]), sample_config)
    assert "Unknown presets: vhs-tape" in exc.value.problems


def test_validate_plan_rejects_missing_file(sample_config, source_files, make_plan, tmp_path):
    missing = tmp_path / "gone.mp4"
    with pytest.raises(BatchValidationError) as exc:
        validate_plan(make_plan([source_files[0], missing]), sample_config)
    assert str(missing) in str(exc.value)


def test_validate_plan_uses_injected_source_check(sample_config, make_plan):
    validate_plan(make_plan([Path("/virtual/clip.mp4")]), sample_config, source_exists=lambda p: True)


def test_validate_plan_rejects_key_collisions(sample_config, tmp_path, make_plan):
    first = tmp_path / "one" / "clip.mp4"
    second = tmp_path / "two" / "clip.mp4"
    for path in (first, second):
        path.parent.mkdir()
        path.write_bytes(b"x")

    with pytest.raises(BatchValidationError) as exc:
        validate_plan(make_plan([first, second]), sample_config)
    assert "clip.mp4" in str(exc.value)


def test_validate_plan_reports_every_problem(sample_config, tmp_path, make_plan):
    with pytest.raises(BatchValidationError) as exc:
        validate_plan(make_plan([tmp_path / "missing.mp4"], ["nope"]), sample_config)
    assert len(exc.value.problems) == 2


def test_validate_plan_rejects_sources_writing_the_same_output(sample_config, tmp_path, make_plan):
    # clip.mp4 and clip.mov get distinct keys but both encode to "clip - Web.mp4"
    files = [tmp_path / "clip.mp4", tmp_path / "clip.mov"]
    for path in files:
        path.write_bytes(b"x")
    plan = make_plan(files)

    assert list(find_output_collisions(expand_plan(plan, sample_config)).values()) == [
        ["clip.mp4::web-standard", "clip.mov::web-standard"],
    ]
    with pytest.raises(BatchValidationError) as exc:
        validate_plan(plan, sample_config)
    assert len(exc.value.problems) == 1
    assert "clip - Web.mp4" in exc.value.problems[0]


def test_validate_plan_rejects_equal_custom_output_names(sample_config, source_files, make_plan):
    plan = make_plan(source_files[:2], custom_output_names={
        source_files[0]: "landing",
        source_files[1]: "landing.mov",
    })
    with pytest.raises(BatchValidationError) as exc:
        validate_plan(plan, sample_config)
    assert "landing.mp4" in str(exc.value)


def test_validate_plan_one_source_many_presets_is_fine(sample_config, source_files, make_plan):
    plan = make_plan(source_files[:1], ["web-hero", "web-mobile"])
    validate_plan(plan, sample_config)
    assert find_output_collisions(expand_plan(plan, sample_config)) == {}


def test_validate_plan_reports_key_collision_once(sample_config, tmp_path, make_plan):
    first = tmp_path / "one" / "clip.mp4"
    second = tmp_path / "two" / "clip.mp4"
    for path in (first, second):
        path.parent.mkdir()
        path.write_bytes(b"x")

    with pytest.raises(BatchValidationError) as exc:
        validate_plan(make_plan([first, second]), sample_config)
    assert len(exc.value.problems) == 1
