from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int       # seconds until the current window ends

    @property
    def retry_after(self) -> int:
        return max(1, self.reset_in)

    def headers(self, policy: RateLimitPolicy) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(policy.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in),
        }
