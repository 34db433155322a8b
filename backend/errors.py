"""Failure taxonomy shared by the onboarding, insight and resume flows.

Each error carries the HTTP status the API layer answers with. Only
``DuplicateInsightRace`` never leaves the insight resolver.
"""

from __future__ import annotations


class CareerCoachError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotAuthenticated(CareerCoachError):
    status_code = 401

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class UserNotFound(CareerCoachError):
    status_code = 404

    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class InvalidInput(CareerCoachError):
    status_code = 400


class NotOnboarded(CareerCoachError):
    status_code = 409

    def __init__(self, message: str = "Complete onboarding to view industry insights."):
        super().__init__(message)


class UpstreamGenerationFailure(CareerCoachError):
    status_code = 502


class PersistenceFailure(CareerCoachError):
    status_code = 500


class DuplicateInsightRace(CareerCoachError):
    """Another request inserted the same industry first."""

    status_code = 409

    def __init__(self, industry: str):
        super().__init__(f"Industry insight for '{industry}' already exists.")
        self.industry = industry
