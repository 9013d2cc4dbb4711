"""Verification job payload."""
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional


@dataclass(slots=True)
class VerificationJob:
    submission_id: int
    attempt: int = 1
    priority: str = "normal"
    correlation_id: Optional[str] = None

    def key(self) -> str:
        """Claim key: one worker per submission at a time."""
        return f"verify:{self.submission_id}"

    def next_attempt(self) -> "VerificationJob":
        return VerificationJob(
            submission_id=self.submission_id,
            attempt=self.attempt + 1,
            priority=self.priority,
            correlation_id=self.correlation_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationJob":
        return cls(
            submission_id=int(data["submission_id"]),
            attempt=int(data.get("attempt", 1)),
            priority=str(data.get("priority", "normal")),
            correlation_id=data.get("correlation_id"),
        )


__all__ = ["VerificationJob"]
