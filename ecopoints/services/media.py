"""Media probing, frame extraction and perceptual fingerprints.

``FfmpegMediaProber`` shells out to ``ffprobe`` / ``ffmpeg``; the pipeline
only depends on the ``MediaProber`` interface so tests inject a fake.
Thumbnails and fingerprints are computed with Pillow.
"""
from __future__ import annotations

import io
import json
import os
import subprocess
import tempfile
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional

from PIL import Image, UnidentifiedImageError

from ecopoints.config import VERIFICATION_SETTINGS
from ecopoints.errors import JobTimeout, MediaProbeError
from ecopoints.services.scoring import MediaMetadata
from ecopoints.utils import get_logger

logger = get_logger(__name__)

FINGERPRINT_SIZE = 8  # 8x8 grid -> 64 bits -> 16 hex chars


class MediaProber(ABC):
    @abstractmethod
    def probe(self, data: bytes, *, timeout: Optional[float] = None) -> MediaMetadata:
        """Duration, size, resolution and codec of a video; MediaProbeError if unreadable."""

    @abstractmethod
    def extract_frame(self, data: bytes, at_seconds: float, *, timeout: Optional[float] = None) -> bytes:
        """Encoded still image (PNG/JPEG) taken ``at_seconds`` into the video."""


@contextmanager
def _spooled(data: bytes) -> Iterator[str]:
    fd, path = tempfile.mkstemp(prefix="ecopoints-", suffix=".video")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        yield path
    finally:
        try:
            os.remove(path)
        except OSError:
            logger.warning("Could not remove temporary media file", path=path)


class FfmpegMediaProber(MediaProber):
    def __init__(self, ffprobe_binary: Optional[str] = None, ffmpeg_binary: Optional[str] = None):
        self.ffprobe = ffprobe_binary or str(VERIFICATION_SETTINGS["ffprobe_binary"])
        self.ffmpeg = ffmpeg_binary or str(VERIFICATION_SETTINGS["ffmpeg_binary"])

    def _run(self, args: list[str], timeout: Optional[float]) -> bytes:
        try:
            completed = subprocess.run(args, capture_output=True, timeout=timeout, check=True)
        except subprocess.TimeoutExpired as e:
            raise JobTimeout(f"{args[0]} exceeded {timeout:.1f}s") from e
        except FileNotFoundError as e:
            raise MediaProbeError(f"{args[0]} is not installed") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b"").decode(errors="replace").strip()
            raise MediaProbeError(f"{args[0]} failed: {stderr[:300]}") from e
        return completed.stdout

    def probe(self, data: bytes, *, timeout: Optional[float] = None) -> MediaMetadata:
        with _spooled(data) as path:
            raw = self._run(
                [self.ffprobe, "-v", "error", "-print_format", "json", "-show_format", "-show_streams", path],
                timeout,
            )
        try:
            info = json.loads(raw or b"{}")
            video = next(s for s in info.get("streams", []) if s.get("codec_type") == "video")
            duration = float(info.get("format", {}).get("duration") or video.get("duration") or 0.0)
            return MediaMetadata(
                duration_s=duration,
                size_bytes=len(data),
                width=int(video.get("width") or 0),
                height=int(video.get("height") or 0),
                codec=video.get("codec_name"),
            )
        except (ValueError, StopIteration, TypeError) as e:
            raise MediaProbeError(f"Unreadable probe output: {e}") from e

    def extract_frame(self, data: bytes, at_seconds: float, *, timeout: Optional[float] = None) -> bytes:
        with _spooled(data) as path:
            frame = self._run(
                [
                    self.ffmpeg, "-v", "error", "-ss", f"{at_seconds:.3f}", "-i", path,
                    "-frames:v", "1", "-f", "image2pipe", "-vcodec", "png", "-",
                ],
                timeout,
            )
        if not frame:
            raise MediaProbeError("No frame could be extracted")
        return frame


def frame_offset(duration_s: float) -> float:
    """Seek target for the representative frame: a few seconds in, or the mid-point of short clips."""
    seek = float(VERIFICATION_SETTINGS["frame_seek_seconds"])
    if duration_s >= seek:
        return seek
    return max(0.0, duration_s / 2)


def _open_image(frame: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(frame))
        image.load()
        return image
    except (UnidentifiedImageError, OSError) as e:
        raise MediaProbeError(f"Frame is not a decodable image: {e}") from e


def make_thumbnail(frame: bytes) -> bytes:
    width = int(VERIFICATION_SETTINGS["thumbnail_width"])
    height = int(VERIFICATION_SETTINGS["thumbnail_height"])
    image = _open_image(frame).convert("RGB").resize((width, height))
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=85)
    return out.getvalue()


def perceptual_fingerprint(frame: bytes) -> str:
    """64-bit average hash: grayscale 8x8, one bit per pixel above the mean."""
    image = _open_image(frame).convert("L").resize((FINGERPRINT_SIZE, FINGERPRINT_SIZE))
    pixels = list(image.tobytes())
    mean = sum(pixels) / len(pixels)
    bits = 0
    for value in pixels:
        bits = (bits << 1) | (1 if value > mean else 0)
    return f"{bits:016x}"


def hamming_distance(a: str, b: str) -> int:
    return bin(int(a, 16) ^ int(b, 16)).count("1")


__all__ = [
    "MediaProber",
    "FfmpegMediaProber",
    "frame_offset",
    "make_thumbnail",
    "perceptual_fingerprint",
    "hamming_distance",
]
