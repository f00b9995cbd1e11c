"""Exception hierarchy for suitey."""

from typing import List, Optional


class SuiteyError(Exception):
    """Orchestrator error with actionable guidance."""

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        error_code: Optional[str] = None,
        raw_output: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggestions = suggestions or []
        self.error_code = error_code
        self.raw_output = raw_output

    def __str__(self) -> str:
        result = self.message
        if self.error_code:
            result += f" (Code: {self.error_code})"
        if self.suggestions:
            result += "\n\nSuggestions:\n" + "\n".join(f"• {s}" for s in self.suggestions)
        return result


class RecordValidationError(SuiteyError):
    """A record value or serialized record is malformed."""


class RegistrationError(SuiteyError):
    """A module could not be registered."""


class ModuleNotFoundInRegistry(SuiteyError):
    """Lookup of an unknown module identifier or path."""


class SuiteConfigError(SuiteyError):
    """Explicit suite configuration could not be parsed."""


class BuildError(SuiteyError):
    """A build step or image assembly failed."""

    def __init__(
        self,
        message: str,
        framework: Optional[str] = None,
        command: Optional[str] = None,
        raw_output: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
    ):
        super().__init__(message, suggestions=suggestions, error_code="BUILD_FAILED", raw_output=raw_output)
        self.framework = framework
        self.command = command


class ImageVerificationError(BuildError):
    """A test image is missing artifacts, source or tests."""


class RuntimeUnavailableError(SuiteyError):
    """The container runtime is not installed or not reachable."""


class InterruptedRun(SuiteyError):
    """Work was abandoned because an interrupt was received."""
