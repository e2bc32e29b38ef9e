from mbc.infrastructure.housekeeping import temp_path_for
from mbc.pipeline.output_paths import claim_output_path, next_free_path, resolve_output_path


def test_missing_destination_is_used(tmp_path):
    desired = tmp_path / "clip.mp4"
    assert resolve_output_path(desired, skip_existing=True) == (desired, False)
    assert resolve_output_path(desired, skip_existing=False) == (desired, False)


def test_existing_destination_skipped(tmp_path):
    desired = tmp_path / "clip.mp4"
    desired.write_bytes(b"x")
    decision = resolve_output_path(desired, skip_existing=True)
    assert decision.skip is True
    assert decision.path == desired


def test_existing_destination_gets_counter_suffix(tmp_path):
    desired = tmp_path / "clip.mp4"
    desired.write_bytes(b"x")
    (tmp_path / "clip_1.mp4").write_bytes(b"x")

    decision = resolve_output_path(desired, skip_existing=False)
    assert decision.skip is False
    assert decision.path == tmp_path / "clip_2.mp4"


def test_next_free_path_avoids_in_progress_temp(tmp_path):
    desired = tmp_path / "clip.mp4"
    temp_path_for(tmp_path / "clip_1.mp4").write_bytes(b"partial")
    assert next_free_path(desired) == tmp_path / "clip_2.mp4"


def test_claim_output_path_across_batch(tmp_path):
    taken = set()
    first = claim_output_path(tmp_path / "a.mp4", taken)
    taken.add(first)
    second = claim_output_path(tmp_path / "a.mp4", taken)
    taken.add(second)
    third = claim_output_path(tmp_path / "a.mp4", taken)

    assert first == tmp_path / "a.mp4"
    assert second == tmp_path / "a_1.mp4"
    assert third == tmp_path / "a_2.mp4"


def test_rename_skips_paths_claimed_by_other_jobs(tmp_path):
    desired = tmp_path / "a.mp4"
    desired.write_bytes(b"x")

    decision = resolve_output_path(desired, skip_existing=False, taken={desired, tmp_path / "a_1.mp4"})

    assert decision == (tmp_path / "a_2.mp4", False)
