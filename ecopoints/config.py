"""Core application configuration & tunable business rules.

Everything that may evolve (capture window, daily submission limit, scoring
weights, point awards, cashout bounds, retry/circuit thresholds, queue
priorities) lives here so it can be adjusted without touching service logic.
Values are module-level dicts so tests can monkeypatch them; deployments
override the main knobs through environment variables.
"""
from __future__ import annotations

import os
from decimal import Decimal

_seed_env = os.getenv("GATEWAYS_RANDOM_SEED")
GATEWAYS_RANDOM_SEED: int | None = int(_seed_env) if _seed_env and _seed_env.strip() else None

# Probability of a simulated transient failure in the mock payout gateways
MOCK_FAILURE_RATE: float = float(os.getenv("MOCK_FAILURE_RATE", "0.05"))

# ------------------------------ Submissions ------------------------------- #
SUBMISSION_SETTINGS: dict[str, int] = {
    "daily_limit": int(os.getenv("SUBMISSION_DAILY_LIMIT", "10")),
    "capture_window_hours": 24,   # recorded_at must fall within [now - window, now]
    "max_title_length": 200,
    "max_description_length": 2000,
}

# ------------------------------- Scoring ---------------------------------- #
# Heuristic auto-score in [0, 1], persisted as an integer 0-100.
SCORING_SETTINGS: dict[str, float | int] = {
    "base": 0.5,
    "ideal_duration_min_s": 10,
    "ideal_duration_max_s": 60,
    "ideal_duration_bonus": 0.2,
    "short_duration_max_s": 5,
    "short_duration_penalty": 0.3,
    "hd_min_width": 1280,
    "hd_min_height": 720,
    "hd_bonus": 0.1,
    "ideal_size_min_mb": 1,
    "ideal_size_max_mb": 50,
    "ideal_size_bonus": 0.1,
    "oversize_mb": 100,
    "oversize_penalty": 0.2,
    # Strictly greater than this -> auto_verified, otherwise needs_review
    "auto_verify_threshold": 70,
}

POINT_AWARDS: dict[str, int] = {
    "base_points": 100,
    "quality_bonus_points": 50,
    # Strictly greater auto_score earns the bonus
    "quality_bonus_threshold": 80,
}

# ---------------------------- Verification -------------------------------- #
VERIFICATION_SETTINGS: dict[str, float | int | str | bool] = {
    "job_timeout_seconds": float(os.getenv("VERIFICATION_JOB_TIMEOUT", "300")),
    "frame_seek_seconds": 5,
    "thumbnail_width": 320,
    "thumbnail_height": 240,
    "worker_concurrency": int(os.getenv("VERIFICATION_WORKERS", "2")),
    "start_worker": os.getenv("VERIFICATION_WORKER_ENABLED", "true").lower() in ("1", "true", "yes"),
    # Re-enqueue delay when another worker holds the submission id
    "claim_retry_delay_seconds": 2.0,
    # Fingerprints this close (in bits) are treated as a possible duplicate
    "duplicate_hamming_threshold": 4,
    "duplicate_scan_limit": 500,
    "ffprobe_binary": os.getenv("FFPROBE_BINARY", "ffprobe"),
    "ffmpeg_binary": os.getenv("FFMPEG_BINARY", "ffmpeg"),
}

# ------------------------------- Cashouts --------------------------------- #
CASHOUT_SETTINGS: dict[str, Decimal | int] = {
    "points_to_cash_rate": Decimal(os.getenv("POINTS_TO_CASH_RATE", "0.01")),
    "min_cash_amount": Decimal("5.00"),
    "max_cash_amount": Decimal("1000.00"),
    "min_points": 500,
    "max_points": 100_000,
}

# ----------------------------- Circuit Breaker ---------------------------- #
CIRCUIT_BREAKER: dict[str, int | float] = {
    "failure_threshold": 5,          # Consecutive failures before OPEN
    "open_cooldown_seconds": 300,    # Stay OPEN for 5 minutes
    "half_open_probe_count": 3,      # Probes allowed in HALF_OPEN
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
    "base_seconds": 1,
    "factor": 2,          # Exponential factor
    "max_seconds": 60,
    "max_attempts": 3,
    "jitter_pct": 0.10,   # +/-10% jitter
}

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, dict[str, int] | int | str | bool | float] = {
    "priorities": {  # Lower number = higher priority
        "high": 0,
        "normal": 5,
        "low": 10,
    },
    "warn_depth": 1000,
    "max_in_memory": 5000,
    "use_redis": os.getenv("USE_REDIS_QUEUE", "false").lower() in ("1", "true", "yes"),
    "redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    "redis_ready_key": "ecopoints:verification:ready",
    "redis_scheduled_key": "ecopoints:verification:scheduled",
    "redis_claim_prefix": "ecopoints:verification:claim:",
    "redis_health_check_timeout": 2.0,
}

# -------------------------------- Storage --------------------------------- #
STORAGE_SETTINGS: dict[str, str | int] = {
    "backend": os.getenv("STORAGE_BACKEND", "local"),   # local | memory
    "root_dir": os.getenv("STORAGE_ROOT", "./media"),
    "public_base_url": os.getenv("STORAGE_PUBLIC_URL", "http://localhost:8000/media"),
    "signing_secret": os.getenv("STORAGE_SIGNING_SECRET", "dev-storage-secret"),
    "signed_url_ttl_seconds": 900,
    "max_upload_bytes": 200 * 1024 * 1024,
}

# ---------------------------- Payout Gateways ----------------------------- #
PAYOUT_GATEWAY_SETTINGS: dict[str, str | float | None] = {
    # When set, payouts go through the generic HTTP gateway instead of mocks
    "http_endpoint": os.getenv("PAYOUT_GATEWAY_URL") or None,
    "http_api_key": os.getenv("PAYOUT_GATEWAY_API_KEY") or None,
    "request_timeout_seconds": float(os.getenv("PAYOUT_GATEWAY_TIMEOUT", "15")),
    # Simulated latency range for the mock gateways
    "mock_latency_min_seconds": float(os.getenv("MOCK_GATEWAY_LATENCY_MIN", "0.05")),
    "mock_latency_max_seconds": float(os.getenv("MOCK_GATEWAY_LATENCY_MAX", "0.3")),
}

# Per-gateway shared secrets for webhook signatures (empty = not enforced)
WEBHOOK_SECRETS: dict[str, str] = {
    name: os.getenv(f"WEBHOOK_SECRET_{name.upper()}", "")
    for name in ("stripe", "paypal", "bank_transfer", "crypto", "upi")
}

# Header key required to create elevated (non-tourist) users
ADMIN_BOOTSTRAP_KEY: str = os.getenv("ADMIN_BOOTSTRAP_KEY", "admin_demo_key_123")

if GATEWAYS_RANDOM_SEED is not None:
    import random
    random.seed(GATEWAYS_RANDOM_SEED)

__all__ = [
    "GATEWAYS_RANDOM_SEED",
    "MOCK_FAILURE_RATE",
    # Rule groups
    "SUBMISSION_SETTINGS",
    "SCORING_SETTINGS",
    "POINT_AWARDS",
    "VERIFICATION_SETTINGS",
    "CASHOUT_SETTINGS",
    "CIRCUIT_BREAKER",
    "BACKOFF_POLICY",
    "QUEUE_SETTINGS",
    "STORAGE_SETTINGS",
    "PAYOUT_GATEWAY_SETTINGS",
    "WEBHOOK_SECRETS",
    "ADMIN_BOOTSTRAP_KEY",
]
