"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Budget ledger: per-account spend limits over daily, monthly or yearly periods.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Literal

from ..errors import BudgetExceededError, ConfigurationError
from ..runtime.contracts import BudgetPolicy
from ..types import CallerIdentity
from .stores import InMemoryUsageStore, UsageStore

logger = logging.getLogger("cbroute.cost.ledger")

BudgetPeriod = Literal["daily", "monthly", "yearly"]
BUDGET_PERIODS: tuple[str, ...] = ("daily", "monthly", "yearly")

# Buckets outlive their period by at least one more period.
PERIOD_TTL_S: dict[str, float] = {
    "daily": 2 * 86400.0,
    "monthly": 62 * 86400.0,
    "yearly": 731 * 86400.0,
}


def period_bucket(period: BudgetPeriod, timestamp_s: float) -> str:
    """Return the ledger bucket for `timestamp_s` (UTC)."""
    moment = datetime.fromtimestamp(timestamp_s, tz=timezone.utc)
    if period == "daily":
        return f"daily:{moment:%Y-%m-%d}"
    if period == "monthly":
        return f"monthly:{moment:%Y-%m}"
    if period == "yearly":
        return f"yearly:{moment:%Y}"
    raise ValueError(f"Unknown budget period '{period}'")


@dataclass(frozen=True, slots=True)
class Budget:
    """Spend limit for one account."""

    account: str
    limit_usd: float
    period: BudgetPeriod = "monthly"
    warning_threshold: float | None = None


def _account_of(row: Mapping[str, Any]) -> str:
    account = str(row.get("account") or "").strip()
    if account:
        return account
    if row.get("project_id"):
        return f"project:{row['project_id']}"
    if row.get("user_id"):
        return f"user:{row['user_id']}"
    raise ConfigurationError("Budget row needs 'account', 'project_id' or 'user_id'")


def budget_from_mapping(row: Mapping[str, Any]) -> Budget:
    """Build one budget from a budgets-file row."""
    account = _account_of(row)
    try:
        limit = float(row["limit_usd"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Budget '{account}' needs a numeric limit_usd") from exc
    if limit < 0:
        raise ConfigurationError(f"Budget '{account}' limit_usd must be >= 0")

    period = str(row.get("period") or "monthly").strip().lower()
    if period not in BUDGET_PERIODS:
        raise ConfigurationError(f"Budget '{account}' has unknown period '{period}'")

    threshold = row.get("warning_threshold")
    if threshold is not None:
        try:
            threshold = float(threshold)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Budget '{account}' warning_threshold must be a number"
            ) from exc
        if not 0.0 < threshold <= 1.0:
            raise ConfigurationError(f"Budget '{account}' warning_threshold must be in (0, 1]")
    return Budget(
        account=account,
        limit_usd=limit,
        period=period,  # type: ignore[arg-type]
        warning_threshold=threshold,
    )


def budgets_from_file(path: str | Path) -> list[Budget]:
    """Load budgets from a JSON list file."""
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Cannot load budgets file '{path}': {exc}") from exc
    if not isinstance(payload, list):
        raise ConfigurationError("Budgets file must contain a JSON list")
    budgets = [budget_from_mapping(row) for row in payload if isinstance(row, Mapping)]
    if len(budgets) != len(payload):
        raise ConfigurationError("Budgets file rows must be objects")
    return budgets


@dataclass(frozen=True, slots=True)
class BudgetStatus:
    """
    Ledger snapshot for one account and period bucket.

    Only `used` is stored; everything else is derived. An account with no
    budget is unlimited and never warns or blocks.
    """

    account: str
    used: float
    limit: float | None
    period: BudgetPeriod
    bucket: str
    warning_threshold: float = 0.8

    @property
    def remaining(self) -> float | None:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0.0)

    @property
    def percentage_used(self) -> float:
        if self.limit is None:
            return 0.0
        if self.limit <= 0:
            return 100.0
        return self.used / self.limit * 100.0

    @property
    def is_exhausted(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    @property
    def is_warning(self) -> bool:
        return self.limit is not None and self.percentage_used >= self.warning_threshold * 100.0

    @property
    def message(self) -> str:
        if self.limit is None:
            return f"No budget set: ${self.used:.2f} used"
        if self.is_exhausted:
            return f"Budget exhausted: ${self.used:.2f} of ${self.limit:.2f} used"
        if self.is_warning:
            return f"Budget warning: {self.percentage_used:.1f}% of budget used"
        return f"Budget healthy: ${self.used:.2f} of ${self.limit:.2f} used"


class BudgetLedger:
    """Accounts per-request cost against per-account budgets."""

    def __init__(
        self,
        store: UsageStore | None = None,
        policy: BudgetPolicy | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store or InMemoryUsageStore()
        self.policy = policy or BudgetPolicy()
        self._clock = clock
        self._budgets: dict[str, Budget] = {}
        self._lock = Lock()

    def set_budget(
        self,
        account: str,
        limit_usd: float,
        *,
        period: BudgetPeriod = "monthly",
        warning_threshold: float | None = None,
    ) -> Budget:
        if limit_usd < 0:
            raise ValueError("Budget limit must be >= 0")
        if period not in BUDGET_PERIODS:
            raise ValueError(f"Unknown budget period '{period}'")
        budget = Budget(
            account=account,
            limit_usd=float(limit_usd),
            period=period,
            warning_threshold=warning_threshold,
        )
        with self._lock:
            self._budgets[account] = budget
        return budget

    def load_budgets(self, budgets: Iterable[Budget]) -> int:
        """Install budgets, replacing any existing budget per account."""
        budgets = list(budgets)
        with self._lock:
            for budget in budgets:
                self._budgets[budget.account] = budget
        logger.info("Loaded %d budgets", len(budgets))
        return len(budgets)

    def list_budgets(self) -> list[Budget]:
        with self._lock:
            return list(self._budgets.values())

    def get_budget(self, account: str) -> Budget | None:
        with self._lock:
            return self._budgets.get(account)

    def clear_budget(self, account: str) -> None:
        with self._lock:
            self._budgets.pop(account, None)

    def _bucket(self, budget: Budget | None) -> tuple[BudgetPeriod, str]:
        period: BudgetPeriod = budget.period if budget is not None else "monthly"
        return period, period_bucket(period, self._clock())

    def _status(self, account: str, budget: Budget | None, used: float, period: BudgetPeriod, bucket: str) -> BudgetStatus:
        threshold = self.policy.warning_threshold
        if budget is not None and budget.warning_threshold is not None:
            threshold = budget.warning_threshold
        return BudgetStatus(
            account=account,
            used=used,
            limit=budget.limit_usd if budget is not None else None,
            period=period,
            bucket=bucket,
            warning_threshold=threshold,
        )

    async def status(self, account: str) -> BudgetStatus:
        budget = self.get_budget(account)
        period, bucket = self._bucket(budget)
        used = await self.store.get(f"{account}:{bucket}")
        return self._status(account, budget, used, period, bucket)

    async def admit(self, caller: CallerIdentity) -> BudgetStatus:
        """
        Admission check run before routing.

        Raises `BudgetExceededError` when the account is exhausted under the
        block policy; under the warn policy the request proceeds.
        """
        status = await self.status(caller.account)
        if status.is_exhausted:
            if self.policy.mode == "block":
                raise BudgetExceededError(status.message, account=status.account)
            logger.warning("%s (account=%s, mode=warn)", status.message, status.account)
        return status

    async def charge(
        self,
        account: str,
        cost_usd: float,
        *,
        enforce: bool = False,
    ) -> BudgetStatus:
        """
        Add actual cost to the current bucket and return the updated status.

        The increment is always applied. With `enforce=True` under the block
        policy, a charge that leaves the account exhausted raises
        `BudgetExceededError` after recording it.
        """
        if cost_usd < 0:
            raise ValueError("Charge must be >= 0")
        budget = self.get_budget(account)
        period, bucket = self._bucket(budget)
        used = await self.store.increment(
            f"{account}:{bucket}", float(cost_usd), ttl_s=PERIOD_TTL_S[period]
        )
        status = self._status(account, budget, used, period, bucket)

        if budget is not None:
            before = self._status(account, budget, used - cost_usd, period, bucket)
            if status.is_exhausted and not before.is_exhausted:
                logger.warning("%s (account=%s)", status.message, account)
            elif status.is_warning and not before.is_warning:
                logger.warning("%s (account=%s)", status.message, account)

        if enforce and status.is_exhausted and self.policy.mode == "block":
            raise BudgetExceededError(status.message, account=account)
        return status
