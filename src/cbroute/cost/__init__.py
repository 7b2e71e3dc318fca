"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: cost/__init__.py.
"""

from .analytics import CostAnalytics, CostHistory, CostRecord
from .estimator import CostEstimator, estimate_prompt_tokens, estimate_text_tokens
from .ledger import (
    Budget,
    BudgetLedger,
    BudgetStatus,
    budget_from_mapping,
    budgets_from_file,
    period_bucket,
)
from .stores import (
    InMemoryUsageStore,
    RedisUsageStore,
    UsageStore,
    create_usage_store,
    list_usage_stores,
    register_usage_store,
)

__all__ = [
    "CostEstimator",
    "estimate_prompt_tokens",
    "estimate_text_tokens",
    "Budget",
    "BudgetLedger",
    "BudgetStatus",
    "period_bucket",
    "budget_from_mapping",
    "budgets_from_file",
    "CostRecord",
    "CostHistory",
    "CostAnalytics",
    "UsageStore",
    "InMemoryUsageStore",
    "RedisUsageStore",
    "create_usage_store",
    "list_usage_stores",
    "register_usage_store",
]
