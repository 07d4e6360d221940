"""Quota enforcement and usage auditing."""

from .quota import PLAN_LIMITS, PUBLISH_OPERATIONS, UNLIMITED, PlanLimits, QuotaDecision, QuotaManager, build_plan_limits
from .recorder import UsageEvent, UsageRecorder, UsageStatus

__all__ = [
    "PLAN_LIMITS",
    "PUBLISH_OPERATIONS",
    "UNLIMITED",
    "PlanLimits",
    "QuotaDecision",
    "QuotaManager",
    "UsageEvent",
    "UsageRecorder",
    "UsageStatus",
    "build_plan_limits",
]
