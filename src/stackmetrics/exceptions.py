"""Exception hierarchy for stackmetrics.

Remote failures never escape a publish cycle; these types exist so the
transport can describe what went wrong and the export layer can decide
how to degrade.
"""

from __future__ import annotations


class StackMetricsError(Exception):
    """Base error for the package."""

    pass


class ConfigError(StackMetricsError):
    """Invalid or unreadable export configuration."""

    def __init__(self, errors: list[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        super().__init__(f"Configuration validation failed: {', '.join(errors)}")


class TransportError(StackMetricsError):
    """A call to the monitoring backend failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)
