"""Failure types raised while advancing a periodized plan.

A held or already-completed lease is not an error and never raises; it is
reported as a skipped outcome. Everything below terminates one generation
attempt and leaves its lease ``failed`` so a later scan can retry.
"""

from __future__ import annotations


class SchedulerError(RuntimeError):
    """Base exception for plan advancement failures.

    Attributes:
        reason: Short human readable reason stored on the lease.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class DataError(SchedulerError):
    """Plan, preferences or periodization missing or malformed."""


class PlanCompleteError(DataError):
    """The plan is already on its final week."""


class GeneratorError(SchedulerError):
    """The external week generator failed, timed out or returned nothing usable."""


class PersistenceError(SchedulerError):
    """Writing the generated week back to storage failed."""
