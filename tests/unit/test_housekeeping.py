from pathlib import Path

from mbc.infrastructure.housekeeping import HousekeepingService, temp_path_for


def test_temp_path_for_appends_suffix():
    assert temp_path_for(Path("/out/clip.mp4")) == Path("/out/clip.mp4.tmp")


def test_cleanup_temp_files_recursive(tmp_path):
    (tmp_path / "sub").mkdir()
    (tmp_path / "a.mp4.tmp").write_text("partial")
    (tmp_path / "sub" / "b.heic.tmp").write_text("partial")
    (tmp_path / "done.mp4").write_text("complete")

    removed = HousekeepingService().cleanup_temp_files(tmp_path)

    assert removed == 2
    assert not (tmp_path / "a.mp4.tmp").exists()
    assert not (tmp_path / "sub" / "b.heic.tmp").exists()
    assert (tmp_path / "done.mp4").exists()


def test_cleanup_missing_directory(tmp_path):
    assert HousekeepingService().cleanup_temp_files(tmp_path / "missing") == 0
