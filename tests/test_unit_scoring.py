from ecopoints.services.scoring import (
    BYTES_PER_MB,
    MediaMetadata,
    compute_auto_score,
    is_auto_verifiable,
    points_for_score,
)


def test_hd_clip_in_ideal_window_scores_90():
    meta = MediaMetadata(duration_s=45, size_bytes=20 * BYTES_PER_MB, width=1920, height=1080)
    score = compute_auto_score(meta)
    assert score == 90
    assert is_auto_verifiable(score)
    assert points_for_score(score) == 150


def test_short_low_res_clip_needs_review():
    meta = MediaMetadata(duration_s=3, size_bytes=500 * 1024, width=640, height=480)
    score = compute_auto_score(meta)
    assert score == 20
    assert not is_auto_verifiable(score)


def test_oversize_file_is_penalised():
    meta = MediaMetadata(duration_s=30, size_bytes=150 * BYTES_PER_MB, width=1280, height=720)
    # 0.5 + 0.2 + 0.1 - 0.2
    assert compute_auto_score(meta) == 60


def test_duration_is_rounded_before_scoring():
    # 60.4s rounds to 60 which is still inside the ideal window
    inside = MediaMetadata(duration_s=60.4, size_bytes=2 * BYTES_PER_MB, width=100, height=100)
    outside = MediaMetadata(duration_s=60.6, size_bytes=2 * BYTES_PER_MB, width=100, height=100)
    assert compute_auto_score(inside) == 80
    assert compute_auto_score(outside) == 60


def test_threshold_is_strict():
    assert not is_auto_verifiable(70)
    assert is_auto_verifiable(71)


def test_points_bonus_only_above_80():
    assert points_for_score(None) == 100
    assert points_for_score(80) == 100
    assert points_for_score(81) == 150


def test_score_is_deterministic_and_bounded():
    meta = MediaMetadata(duration_s=1, size_bytes=500 * BYTES_PER_MB, width=10, height=10)
    first = compute_auto_score(meta)
    assert first == compute_auto_score(meta)
    assert 0 <= first <= 100
