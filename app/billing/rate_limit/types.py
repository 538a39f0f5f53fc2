from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RateLimitBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: datetime
