import io

import pytest
from PIL import Image

from conftest import COLUMNS_PATTERN, TOP_HALF_PATTERN, make_frame
from ecopoints.errors import MediaProbeError
from ecopoints.services.media import (
    FfmpegMediaProber, frame_offset, hamming_distance, make_thumbnail, perceptual_fingerprint
)


def test_same_frame_same_fingerprint():
    frame = make_frame(TOP_HALF_PATTERN)
    fp = perceptual_fingerprint(frame)
    assert len(fp) == 16
    assert fp == perceptual_fingerprint(make_frame(TOP_HALF_PATTERN))


def test_different_frames_are_far_apart():
    a = perceptual_fingerprint(make_frame(TOP_HALF_PATTERN))
    b = perceptual_fingerprint(make_frame(COLUMNS_PATTERN))
    assert hamming_distance(a, b) > 4


def test_rescaled_frame_stays_close():
    small = perceptual_fingerprint(make_frame(TOP_HALF_PATTERN, block=16))
    large = perceptual_fingerprint(make_frame(TOP_HALF_PATTERN, block=40))
    assert hamming_distance(small, large) <= 4


def test_hamming_distance():
    assert hamming_distance("0000000000000000", "0000000000000000") == 0
    assert hamming_distance("0000000000000000", "000000000000000f") == 4
    assert hamming_distance("ffffffffffffffff", "0000000000000000") == 64


def test_thumbnail_is_jpeg_of_configured_size():
    thumb = make_thumbnail(make_frame())
    image = Image.open(io.BytesIO(thumb))
    assert image.format == "JPEG"
    assert image.size == (320, 240)


def test_undecodable_frame_raises_probe_error():
    with pytest.raises(MediaProbeError):
        perceptual_fingerprint(b"definitely not an image")


def test_frame_offset_uses_midpoint_for_short_clips():
    assert frame_offset(45) == 5
    assert frame_offset(4) == 2
    assert frame_offset(0) == 0


def test_missing_ffprobe_binary_is_a_probe_error(tmp_path):
    prober = FfmpegMediaProber(ffprobe_binary=str(tmp_path / "no-such-ffprobe"))
    with pytest.raises(MediaProbeError):
        prober.probe(b"not really a video")
