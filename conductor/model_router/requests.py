"""Request and response types for the request router."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Lower sorts first when a batch is ordered by urgency
PRIORITY_ORDER: dict[Priority, int] = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class RouteStatus(StrEnum):
    OK = "ok"
    CACHED = "cached"
    COST_LIMITED = "cost_limited"
    FAILED = "failed"


COST_LIMIT_MESSAGE = (
    "Request exceeded cost limit. Please simplify the request or increase the cost limit."
)


@dataclass
class RouteRequest:
    """A logical request for one provider completion.

    Attributes:
        prompt: Text to send
        agent_name: Agent on whose behalf the call is made (budget key)
        task_type: Task type tag (budget key, suitability and TTL rules)
        priority: Ordering hint for batches
        cost_limit: Max estimated USD; None disables the check
        speed_priority: Weight latency more heavily when choosing a provider
        cache_ttl_seconds: TTL for the cached response; None uses the rules
        max_response_time_ms: Skip providers slower than this
    """

    prompt: str
    agent_name: str = "unknown"
    task_type: str = "general"
    priority: Priority = Priority.MEDIUM
    cost_limit: float | None = None
    speed_priority: bool = False
    cache_ttl_seconds: float | None = None
    max_response_time_ms: int | None = None

    def __post_init__(self) -> None:
        self.priority = Priority(self.priority)
        if self.cost_limit is not None and self.cost_limit < 0:
            raise ValueError("cost_limit cannot be negative")
        if self.cache_ttl_seconds is not None and self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be positive")
        if self.max_response_time_ms is not None and self.max_response_time_ms <= 0:
            raise ValueError("max_response_time_ms must be positive")


@dataclass
class RouteResponse:
    """Result of routing one request.

    ``status`` distinguishes a real completion from a cache hit, a request
    refused by its cost limit (no provider called) and a failed call.
    """

    content: str
    provider: str
    model: str
    tokens_used: int
    cost: float
    cache_hit: bool
    response_time_ms: float
    status: RouteStatus = RouteStatus.OK
    original_token_estimate: int = 0
    optimized_token_estimate: int = 0
    cost_savings: float = 0.0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (RouteStatus.OK, RouteStatus.CACHED)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data
