"""Heuristic auto-score for probed media.

Deterministic: the same metadata always yields the same score. Weights and
thresholds come from SCORING_SETTINGS / POINT_AWARDS so tests can tune them.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ecopoints.config import SCORING_SETTINGS, POINT_AWARDS

BYTES_PER_MB = 1024 * 1024


@dataclass(slots=True)
class MediaMetadata:
    duration_s: float
    size_bytes: int
    width: int
    height: int
    codec: Optional[str] = None

    @property
    def rounded_duration(self) -> int:
        return int(round(self.duration_s))


def compute_auto_score(meta: MediaMetadata) -> int:
    """Score in [0, 100].

    base 0.5; +0.2 for a duration in the ideal window; -0.3 for very short
    clips; +0.1 for at least 1280x720; +0.1 for an ideal file size; -0.2 for
    oversize files. Clamped to [0, 1] before scaling.
    """
    cfg = SCORING_SETTINGS
    score = float(cfg["base"])

    duration = meta.rounded_duration
    if cfg["ideal_duration_min_s"] <= duration <= cfg["ideal_duration_max_s"]:
        score += float(cfg["ideal_duration_bonus"])
    elif duration < cfg["short_duration_max_s"]:
        score -= float(cfg["short_duration_penalty"])

    if meta.width >= cfg["hd_min_width"] and meta.height >= cfg["hd_min_height"]:
        score += float(cfg["hd_bonus"])

    size_mb = meta.size_bytes / BYTES_PER_MB
    if cfg["ideal_size_min_mb"] <= size_mb <= cfg["ideal_size_max_mb"]:
        score += float(cfg["ideal_size_bonus"])
    elif size_mb > cfg["oversize_mb"]:
        score -= float(cfg["oversize_penalty"])

    score = max(0.0, min(1.0, score))
    return int(round(score * 100))


def is_auto_verifiable(score: int) -> bool:
    return score > int(SCORING_SETTINGS["auto_verify_threshold"])


def points_for_score(auto_score: Optional[int]) -> int:
    """Award for an approved submission: base points plus the quality bonus above the threshold."""
    points = int(POINT_AWARDS["base_points"])
    if auto_score is not None and auto_score > int(POINT_AWARDS["quality_bonus_threshold"]):
        points += int(POINT_AWARDS["quality_bonus_points"])
    return points


__all__ = ["MediaMetadata", "compute_auto_score", "is_auto_verifiable", "points_for_score", "BYTES_PER_MB"]
