"""Domain Events related to outbound API calls and poll cycles.

Examples include events for when calls are retried, fail, or succeed, and
when a poll cycle finishes.
"""

from dataclasses import dataclass, field
import time
from typing import Any, Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# --- Specific API Events ---

@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when an API call succeeds."""
    endpoint: str
    attempts: int
    latency_ms: float
    status_code: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when an API call fails definitively (after retries)."""
    endpoint: str
    attempts: int
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed API call."""
    endpoint: str
    attempt_number: int
    delay_seconds: float
    timestamp: float = field(default_factory=time.time)

# --- Poll Events ---

@dataclass
class CycleCompleted(DomainEvent):
    """Event triggered when a billing or scheduling cycle finishes."""
    cycle: str
    succeeded: bool
    duration_ms: float
    summary: Optional[Any] = None
    timestamp: float = field(default_factory=time.time)
