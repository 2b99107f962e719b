"""
Exception hierarchy for schedule normalization.

Almost nothing in the pipeline raises: ambiguity and policy violations are
recorded as issues on the record. These exceptions are reserved for input
that cannot be processed at all, and for broken policy configuration.
"""

from __future__ import annotations


class ScheduleError(Exception):
    """Base exception for all schedule pipeline failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class PayloadStructureError(ScheduleError):
    """The model payload (or a schedule item) is not a JSON object."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("PAYLOAD_NOT_OBJECT", message, details)


class PolicyConfigError(ScheduleError):
    """A policy override file could not be read or failed validation."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("POLICY_CONFIG_INVALID", message, details)
