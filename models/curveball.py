"""Mastery-gate ("curveball") lifecycle for one idea's coverage record.

The lifecycle is stored as three fields on ``IdeaCoverage``
(``curveball_due_at``, ``curveball_passed``, ``curveball_passed_at``). The
state is always derived from them via :func:`curveball_state`, and the fields
are only changed through the transition functions below.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .coverage import IdeaCoverage


class CurveballState(str, Enum):
    NOT_ELIGIBLE = "not_eligible"
    SCHEDULED = "scheduled"
    DUE = "due"
    QUEUED = "queued"
    PASSED = "passed"


class IllegalTransition(ValueError):
    pass


def curveball_state(coverage: "IdeaCoverage", now: datetime, has_pending_item: bool = False) -> CurveballState:
    if coverage.curveball_passed:
        return CurveballState.PASSED
    if not coverage.is_fully_covered:
        return CurveballState.NOT_ELIGIBLE
    if has_pending_item:
        return CurveballState.QUEUED
    if coverage.curveball_due_at is None or coverage.curveball_due_at > now:
        return CurveballState.SCHEDULED
    return CurveballState.DUE


def schedule_initial(coverage: "IdeaCoverage", base: datetime, delay_days: int) -> bool:
    """NotEligible -> Scheduled. No-op when already scheduled or passed."""
    if coverage.curveball_passed or coverage.curveball_due_at is not None:
        return False
    if not coverage.is_fully_covered:
        raise IllegalTransition("curveball can only be scheduled once every facet is covered")
    coverage.curveball_due_at = base + timedelta(days=delay_days)
    return True


def mark_passed(coverage: "IdeaCoverage", now: datetime) -> None:
    """Queued -> Passed (terminal)."""
    if coverage.curveball_passed:
        return
    if not coverage.is_fully_covered:
        raise IllegalTransition("cannot pass a curveball for an idea that is not fully covered")
    coverage.curveball_passed = True
    coverage.curveball_passed_at = now
    if coverage.curveball_due_at is None or coverage.curveball_due_at > now:
        coverage.curveball_due_at = now


def mark_failed(coverage: "IdeaCoverage", now: datetime, delay_days: int) -> None:
    """Queued -> Scheduled with a fresh due date."""
    if coverage.curveball_passed:
        raise IllegalTransition("curveball already passed")
    if not coverage.is_fully_covered:
        raise IllegalTransition("cannot fail a curveball for an idea that is not fully covered")
    coverage.curveball_due_at = now + timedelta(days=delay_days)


def force_due(coverage: "IdeaCoverage", now: datetime) -> None:
    """Move an unpassed schedule into the past (developer tooling)."""
    if coverage.curveball_passed or not coverage.is_fully_covered:
        return
    coverage.curveball_due_at = now - timedelta(minutes=1)
