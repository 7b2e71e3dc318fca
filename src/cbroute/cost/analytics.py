"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Charged-cost history and the analytics projected from it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from threading import Lock

from ..types import JSONObject

MAX_RANGE_DAYS = 366


def utc_day(timestamp_s: float) -> date:
    return datetime.fromtimestamp(timestamp_s, tz=timezone.utc).date()


@dataclass(frozen=True, slots=True)
class CostRecord:
    """One charged request."""

    timestamp_s: float
    user_id: str
    project_id: str | None
    provider_id: str
    model_id: str
    prompt_tokens: int
    completion_tokens: int
    cost_usd: float

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(slots=True)
class CostAnalytics:
    """Totals and breakdowns over an inclusive UTC day range."""

    period_start: date
    period_end: date
    total_cost: float = 0.0
    total_tokens: int = 0
    requests: int = 0
    provider_breakdown: dict[str, float] = field(default_factory=dict)
    model_breakdown: dict[str, float] = field(default_factory=dict)
    daily_costs: dict[str, float] = field(default_factory=dict)

    @property
    def average_cost_per_token(self) -> float:
        if self.total_tokens <= 0:
            return 0.0
        return self.total_cost / self.total_tokens

    def to_dict(self) -> JSONObject:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "total_cost": self.total_cost,
            "total_tokens": self.total_tokens,
            "requests": self.requests,
            "average_cost_per_token": self.average_cost_per_token,
            "provider_breakdown": dict(self.provider_breakdown),
            "model_breakdown": dict(self.model_breakdown),
            "daily_costs": dict(self.daily_costs),
        }


class CostHistory:
    """
    Process-local day-bucketed history of charged requests.

    Days older than `retention_days` are dropped on every write. Every day in
    a queried range appears in `daily_costs`, including days without spend.
    """

    def __init__(
        self,
        *,
        retention_days: int = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if retention_days < 1:
            raise ValueError("retention_days must be >= 1")
        self.retention_days = retention_days
        self._clock = clock
        self._days: dict[date, list[CostRecord]] = {}
        self._lock = Lock()

    def record(self, row: CostRecord) -> None:
        day = utc_day(row.timestamp_s)
        cutoff = utc_day(self._clock()) - timedelta(days=self.retention_days)
        with self._lock:
            self._days.setdefault(day, []).append(row)
            for stale in [key for key in self._days if key < cutoff]:
                del self._days[stale]

    def analytics(
        self,
        *,
        user_id: str | None = None,
        project_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> CostAnalytics:
        end = end or utc_day(self._clock())
        start = start or end - timedelta(days=self.retention_days - 1)
        if start > end:
            raise ValueError("start must not be after end")
        if (end - start).days > MAX_RANGE_DAYS:
            raise ValueError(f"Range must span at most {MAX_RANGE_DAYS} days")

        result = CostAnalytics(period_start=start, period_end=end)
        with self._lock:
            days = {key: list(rows) for key, rows in self._days.items() if start <= key <= end}

        day = start
        while day <= end:
            day_cost = 0.0
            for row in days.get(day, ()):
                if user_id is not None and row.user_id != user_id:
                    continue
                if project_id is not None and row.project_id != project_id:
                    continue
                day_cost += row.cost_usd
                result.total_tokens += row.total_tokens
                result.requests += 1
                result.provider_breakdown[row.provider_id] = (
                    result.provider_breakdown.get(row.provider_id, 0.0) + row.cost_usd
                )
                result.model_breakdown[row.model_id] = (
                    result.model_breakdown.get(row.model_id, 0.0) + row.cost_usd
                )
            result.daily_costs[day.isoformat()] = day_cost
            result.total_cost += day_cost
            day += timedelta(days=1)
        return result
