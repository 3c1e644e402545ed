from pathlib import Path
from unittest.mock import patch
from batchpress.infrastructure.housekeeping import HousekeepingService


def test_housekeeping_removes_partial_outputs_of_planned_tasks(tmp_path):
    folder = tmp_path / "Web Hero"
    folder.mkdir()
    (folder / "clip - Hero.tmp").write_text("data")
    (folder / "clip - Hero.mp4").write_text("data")

    removed = HousekeepingService().cleanup_partial_outputs([folder / "clip - Hero.mp4"])

    assert removed == 1
    assert not (folder / "clip - Hero.tmp").exists()
    assert (folder / "clip - Hero.mp4").exists()


def test_housekeeping_leaves_unrelated_tmp_files(tmp_path):
    # Output directory defaults to the sources' folder, which may hold the user's own .tmp files
    (tmp_path / "project").mkdir()
    draft = tmp_path / "project" / "draft.tmp"
    draft.write_text("user data")
    (tmp_path / "notes.tmp").write_text("user data")
    (tmp_path / "Web Hero").mkdir()
    (tmp_path / "Web Hero" / "other - Hero.tmp").write_text("data")

    removed = HousekeepingService().cleanup_partial_outputs([tmp_path / "Web Hero" / "clip - Hero.mp4"])

    assert removed == 0
    assert draft.exists()
    assert (tmp_path / "notes.tmp").exists()
    assert (tmp_path / "Web Hero" / "other - Hero.tmp").exists()


def test_housekeeping_nothing_planned(tmp_path):
    (tmp_path / "file1.tmp").write_text("data")
    assert HousekeepingService().cleanup_partial_outputs([]) == 0
    assert (tmp_path / "file1.tmp").exists()


def test_housekeeping_handles_oserror(tmp_path, caplog):
    f = tmp_path / "protected.tmp"
    f.write_text("data")

    with patch.object(Path, "unlink", side_effect=OSError("Permission denied")):
        service = HousekeepingService()
        removed = service.cleanup_partial_outputs([tmp_path / "protected.mp4"])

    assert removed == 0
    assert f.exists()
    assert "Could not remove stale partial output" in caplog.text
