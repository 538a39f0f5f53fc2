from __future__ import annotations

from app.billing.rate_limit.types import RateLimitDecision


class RateLimitedError(Exception):
    def __init__(self, *, key: str, decision: RateLimitDecision) -> None:
        super().__init__(key)
        self.key = key
        self.decision = decision
