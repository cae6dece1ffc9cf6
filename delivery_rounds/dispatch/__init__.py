"""Dispatch services: eligibility queries and the round lifecycle."""

from delivery_rounds.dispatch.base import BaseService
from delivery_rounds.dispatch.eligibility import EligibilityService
from delivery_rounds.dispatch.lifecycle import RoundLifecycleManager
from delivery_rounds.dispatch.validation import (
    customer_window,
    ensure_capacity,
    suggestion_within_tolerance,
    within_tolerance,
)

__all__ = [
    "BaseService",
    "EligibilityService",
    "RoundLifecycleManager",
    "customer_window",
    "ensure_capacity",
    "suggestion_within_tolerance",
    "within_tolerance",
]
