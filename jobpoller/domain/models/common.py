"""Defines the Value Objects shared across the poller.

These objects represent the few concepts the poller handles itself: the
credential it attaches to requests, the cached OAuth2 token, and the items
handed back by the remote API during a cycle.
"""

from dataclasses import dataclass
from typing import Any, Dict, NewType, Optional, TypedDict, Union

# === Core Value Objects ===

Credential = NewType("Credential", str)        # Bearer value sent in the Authorization header
CycleName = NewType("CycleName", str)          # 'billing' or 'scheduling'
ItemId = Union[str, int]                       # identifiers are echoed back exactly as received

# === Authentication Context ===

@dataclass
class CachedToken:
    """OAuth2 access token together with its local expiry (epoch seconds)."""
    access_token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenResponse(TypedDict, total=False):
    """JSON body returned by the identity provider's token endpoint."""
    access_token: str
    expires_in: int
    token_type: str

# === Scheduling Context ===

@dataclass(frozen=True)
class ScheduleItem:
    """A due schedule reported by the remote API."""
    id: ItemId
    next_run_at: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ScheduleItem":
        if not isinstance(payload, dict) or payload.get("id") in (None, ""):
            raise ValueError(f"Schedule item without an id: {payload!r}")
        return cls(id=payload["id"], next_run_at=payload.get("nextRunAt"))

    def to_request_body(self) -> Dict[str, Any]:
        return {"testExecutionRequestId": self.id, "scheduledAt": self.next_run_at}

# === Billing Context ===

@dataclass(frozen=True)
class PendingExecution:
    """A test execution waiting for its usage event (per-execution billing)."""
    id: ItemId

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PendingExecution":
        if not isinstance(payload, dict) or payload.get("id") in (None, ""):
            raise ValueError(f"Pending execution without an id: {payload!r}")
        return cls(id=payload["id"])

# --- Cycle results ---

@dataclass
class CycleReport:
    """Outcome of one cycle run."""
    cycle: CycleName
    succeeded: bool = True
    triggered: int = 0
    failed: int = 0


class BackoffPolicy(TypedDict):
    """Value Object representing retry backoff configuration."""
    initial_delay: float
    factor: float
    max_delay: float
