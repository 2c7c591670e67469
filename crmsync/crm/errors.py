"""Errors raised by CRM backend writers.

The dispatcher treats every class the same way (one retry attempt consumed);
the hierarchy exists so messages and artifacts stay descriptive.
"""

from __future__ import annotations


class CrmWriteError(Exception):
    """Base exception for CRM write failures."""

    def __init__(self, message: str, *, screenshot_reference: str | None = None):
        super().__init__(message)
        self.screenshot_reference = screenshot_reference


class ConfigurationError(CrmWriteError):
    """Connection or mapping configuration cannot produce a write."""

    pass


class UnsupportedBackendError(ConfigurationError):
    """Connection backend type has no registered writer."""

    pass


class NoFieldsToWriteError(ConfigurationError):
    """Mapping resolved to zero non-empty values for this submission."""

    def __init__(self, target: str = "CRM"):
        super().__init__(
            f"No fields to write to {target} (check the field mapping for this form)"
        )


class AuthenticationError(CrmWriteError):
    """Credential exchange with the CRM failed."""

    pass


class RemoteWriteError(CrmWriteError):
    """Transport failure or non-2xx response from the CRM."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PartialFillError(CrmWriteError):
    """One or more browser fields could not be filled."""

    def __init__(
        self,
        failures: list[tuple[str, str]],
        *,
        screenshot_reference: str | None = None,
    ):
        self.failures = failures
        labels = ", ".join(label for label, _ in failures)
        details = "\n".join(f"{label}: {reason}" for label, reason in failures)
        super().__init__(
            f"{len(failures)} field(s) failed to fill: {labels}\n{details}",
            screenshot_reference=screenshot_reference,
        )

    @property
    def failed_fields(self) -> list[str]:
        return [label for label, _ in self.failures]
