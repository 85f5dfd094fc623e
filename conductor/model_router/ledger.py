"""Usage ledger - append-only record of every provider call and its cost.

Each record is scored for efficiency at write time. The ledger answers the
analytics questions the router exposes: spend per provider and per agent,
per-day trends, a rolled-up efficiency score and rule-based cost advice.

In memory the history is capped: once it grows past ``memory_limit`` records
only the newest ``memory_retain`` are kept. The on-disk JSONL log is never
truncated.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

import structlog

if TYPE_CHECKING:
    from conductor.persistence.state_store import StateStore

log = structlog.get_logger(__name__)

Timeframe = Literal["day", "week", "month"]

TIMEFRAME_SECONDS: dict[str, int] = {
    "day": 24 * 60 * 60,
    "week": 7 * 24 * 60 * 60,
    "month": 30 * 24 * 60 * 60,
}


def score_efficiency(tokens_used: int, cost: float, response_time_ms: float) -> int:
    """Efficiency score in [0, 100] for a single call.

    Starts at 100 and is penalised for large prompts, high cost and slow
    responses; free calls get a bonus.
    """
    score = 100
    if tokens_used > 2000:
        score -= 20
    elif tokens_used > 1000:
        score -= 10

    if cost > 0.10:
        score -= 30
    elif cost > 0.05:
        score -= 15

    if response_time_ms > 5000:
        score -= 25
    elif response_time_ms > 3000:
        score -= 10

    if cost == 0:
        score += 20

    return max(0, min(100, score))


@dataclass
class UsageRecord:
    """One priced provider call.

    Attributes:
        provider: Provider key the call went to
        model: Concrete model identifier
        tokens_used: Prompt plus completion tokens
        cost: USD charged for the call
        response_time_ms: Wall time of the provider call
        task_type: Task type the call was made for
        agent_name: Agent on whose behalf the call was made
        timestamp: Epoch seconds when the call completed
        prompt_hash: Cache key of the optimised prompt
        efficiency_score: Derived on append; callers leave it at 0
    """

    provider: str
    model: str
    tokens_used: int
    cost: float
    response_time_ms: float
    task_type: str
    agent_name: str
    timestamp: float = field(default_factory=time.time)
    prompt_hash: str = ""
    efficiency_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageRecord:
        return cls(
            provider=str(data["provider"]),
            model=str(data.get("model", "")),
            tokens_used=int(data["tokens_used"]),
            cost=float(data["cost"]),
            response_time_ms=float(data.get("response_time_ms", 0.0)),
            task_type=str(data.get("task_type", "")),
            agent_name=str(data.get("agent_name", "")),
            timestamp=float(data["timestamp"]),
            prompt_hash=str(data.get("prompt_hash", "")),
            efficiency_score=int(data.get("efficiency_score", 0)),
        )


@dataclass
class EfficiencyTrend:
    date: str
    cost: float
    tokens: int
    requests: int
    avg_response_time: float


@dataclass
class CostAnalytics:
    """Aggregated spend over a timeframe."""

    timeframe: str
    total_cost: float
    total_tokens: int
    request_count: int
    avg_cost_per_request: float
    cost_by_provider: dict[str, float]
    cost_by_agent: dict[str, float]
    efficiency_trends: list[EfficiencyTrend]
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class UsageLedger:
    """Append-only usage log with rolling analytics.

    Args:
        store: Optional state store; records are appended to its JSONL file
        clock: Epoch-seconds clock used for analytics windows
        memory_limit: In-memory record count that triggers trimming
        memory_retain: Records kept after trimming
    """

    def __init__(
        self,
        store: StateStore | None = None,
        clock: Callable[[], float] = time.time,
        memory_limit: int = 10_000,
        memory_retain: int = 5_000,
    ) -> None:
        if memory_retain > memory_limit:
            raise ValueError("memory_retain must not exceed memory_limit")
        self._store = store
        self._clock = clock
        self._memory_limit = memory_limit
        self._memory_retain = memory_retain
        self._records: list[UsageRecord] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> list[UsageRecord]:
        return list(self._records)

    async def append(self, record: UsageRecord) -> UsageRecord:
        """Score and append a record, persisting it if a store is attached."""
        record.efficiency_score = score_efficiency(
            record.tokens_used, record.cost, record.response_time_ms
        )
        async with self._lock:
            self._records.append(record)
            if len(self._records) > self._memory_limit:
                self._records = self._records[-self._memory_retain :]
            if self._store is not None:
                await self._store.aappend_jsonl(self._store.metrics_path, record.to_dict())

        log.info(
            "ledger.usage_tracked",
            agent_name=record.agent_name,
            provider=record.provider,
            tokens_used=record.tokens_used,
            cost=round(record.cost, 6),
            efficiency_score=record.efficiency_score,
        )
        return record

    async def load(self) -> int:
        """Load persisted records from the JSONL log. Bad lines are skipped."""
        if self._store is None:
            return 0
        raw = await asyncio.to_thread(self._store.read_jsonl, self._store.metrics_path)
        loaded: list[UsageRecord] = []
        for item in raw:
            try:
                loaded.append(UsageRecord.from_dict(item))
            except (KeyError, TypeError, ValueError):
                log.warning("ledger.record_skipped", keys=sorted(item))
        async with self._lock:
            self._records = loaded[-self._memory_retain :] if len(loaded) > self._memory_limit else loaded
            count = len(self._records)
        log.info("ledger.loaded", records=count)
        return count

    # ------------------------------------------------------------------ #
    # Analytics
    # ------------------------------------------------------------------ #

    def records_since(self, cutoff: float) -> list[UsageRecord]:
        return [r for r in self._records if r.timestamp > cutoff]

    def analytics(self, timeframe: Timeframe = "day") -> CostAnalytics:
        """Aggregate spend over the trailing ``timeframe``.

        Raises:
            ValueError: If ``timeframe`` is not day, week or month
        """
        if timeframe not in TIMEFRAME_SECONDS:
            raise ValueError(f"Unknown timeframe: {timeframe}")
        recent = self.records_since(self._clock() - TIMEFRAME_SECONDS[timeframe])

        total_cost = sum(r.cost for r in recent)
        total_tokens = sum(r.tokens_used for r in recent)
        cost_by_provider: dict[str, float] = {}
        cost_by_agent: dict[str, float] = {}
        for r in recent:
            cost_by_provider[r.provider] = cost_by_provider.get(r.provider, 0.0) + r.cost
            cost_by_agent[r.agent_name] = cost_by_agent.get(r.agent_name, 0.0) + r.cost

        analytics = CostAnalytics(
            timeframe=timeframe,
            total_cost=total_cost,
            total_tokens=total_tokens,
            request_count=len(recent),
            avg_cost_per_request=total_cost / max(len(recent), 1),
            cost_by_provider=cost_by_provider,
            cost_by_agent=cost_by_agent,
            efficiency_trends=self._efficiency_trends(recent),
            recommendations=[],
        )
        analytics.recommendations = self._cost_recommendations(analytics, recent)
        return analytics

    def real_time_metrics(self) -> dict[str, Any]:
        """Today's headline numbers (trailing 24 hours)."""
        recent = self.records_since(self._clock() - TIMEFRAME_SECONDS["day"])
        analytics = self.analytics("day")
        avg_response_time = (
            sum(r.response_time_ms for r in recent) / len(recent) if recent else 0.0
        )
        return {
            "daily_cost": analytics.total_cost,
            "daily_tokens": analytics.total_tokens,
            "avg_response_time": avg_response_time,
            "cost_by_provider": analytics.cost_by_provider,
            "cost_by_agent": analytics.cost_by_agent,
            "efficiency_score": overall_efficiency(analytics),
            "recommendations": analytics.recommendations,
        }

    @staticmethod
    def _efficiency_trends(records: list[UsageRecord]) -> list[EfficiencyTrend]:
        by_day: dict[str, list[UsageRecord]] = {}
        for r in records:
            day = datetime.fromtimestamp(r.timestamp, UTC).strftime("%Y-%m-%d")
            by_day.setdefault(day, []).append(r)

        trends = [
            EfficiencyTrend(
                date=day,
                cost=sum(r.cost for r in day_records),
                tokens=sum(r.tokens_used for r in day_records),
                requests=len(day_records),
                avg_response_time=sum(r.response_time_ms for r in day_records) / len(day_records),
            )
            for day, day_records in by_day.items()
        ]
        return sorted(trends, key=lambda t: t.date)

    @staticmethod
    def _cost_recommendations(analytics: CostAnalytics, records: list[UsageRecord]) -> list[str]:
        recommendations: list[str] = []

        expensive_providers = [
            p for p, cost in analytics.cost_by_provider.items() if cost > analytics.total_cost * 0.4
        ]
        if expensive_providers:
            recommendations.append(
                "Consider using more cost-effective providers for: " + ", ".join(expensive_providers)
            )

        expensive_agents = [
            a for a, cost in analytics.cost_by_agent.items() if cost > analytics.total_cost * 0.2
        ]
        if expensive_agents:
            recommendations.append(
                "Optimize prompts for high-usage agents: " + ", ".join(expensive_agents)
            )

        if analytics.avg_cost_per_request > 0.05:
            recommendations.append(
                "Average request cost is high - implement more aggressive prompt optimization"
            )

        slow = sum(1 for r in records if r.response_time_ms > 3000)
        if slow > len(records) * 0.2:
            recommendations.append("Consider using faster providers for time-sensitive tasks")

        hash_counts = Counter(r.prompt_hash for r in records if r.prompt_hash)
        duplicates = sum(1 for count in hash_counts.values() if count > 1)
        if duplicates:
            recommendations.append(
                f"{duplicates} duplicate requests detected - improve caching strategy"
            )

        return recommendations


def overall_efficiency(analytics: CostAnalytics) -> int:
    """Roll daily analytics up into one 0-100 efficiency figure."""
    efficiency = 100

    if analytics.total_cost > 10:
        efficiency -= 20
    elif analytics.total_cost > 5:
        efficiency -= 10

    trends = analytics.efficiency_trends
    avg_response_time = trends[-1].avg_response_time if trends else 0.0
    if avg_response_time > 5000:
        efficiency -= 25
    elif avg_response_time > 3000:
        efficiency -= 15

    requests = sum(t.requests for t in trends)
    avg_tokens = analytics.total_tokens / max(requests, 1)
    if avg_tokens > 1500:
        efficiency -= 15
    elif avg_tokens > 1000:
        efficiency -= 8

    return max(0, efficiency)
