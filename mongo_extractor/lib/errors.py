"""Structured exception hierarchy for the extractor.

Every error carries the export it belongs to (when known), a details
mapping for structured logging and an optional suggestion for the user.

Errors deriving from ``UserError`` describe problems the user can fix
(bad configuration, bad query, bad mapping).  They are never retried and
the CLI reports them with exit code 1.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "ExtractorError",
    "UserError",
    "ConfigurationError",
    "ConnectionStartError",
    "ClassifiedExportError",
    "UnclassifiedExportError",
    "LineDecodeError",
    "MappingConfigError",
    "WatermarkResolutionError",
    "WriteError",
    "CodecError",
]


class ExtractorError(Exception):
    """Base exception for all extractor errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        export: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.message = message
        self.export = export
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if export:
            parts.insert(0, f"[{export}]")

        if self.details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in self.details.items())

        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "export": self.export,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class UserError(ExtractorError):
    """Error the user can resolve by changing configuration or data."""


class ConfigurationError(UserError):
    """Invalid or incomplete extractor configuration."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, **kwargs)


class ConnectionStartError(ExtractorError):
    """The export process could not be started.

    Raised for OS level failures (missing binary, fork failure).  This is
    the only error the start retry policy retries.
    """

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.command = command
        self.cause = cause

        details = kwargs.pop("details", {})
        if command:
            details["command"] = command
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = "Check that mongoexport is installed and on PATH."

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class ClassifiedExportError(UserError):
    """Export failed with a recognised, actionable cause."""


class UnclassifiedExportError(ExtractorError):
    """Export failed and the failure text matched no known pattern.

    Carries the command line (credentials redacted) and the raw error
    output for diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        stderr: Optional[str] = None,
        exit_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        self.command = command
        self.stderr = stderr
        self.exit_code = exit_code

        details = kwargs.pop("details", {})
        if command:
            details["command"] = command
        if exit_code is not None:
            details["exit_code"] = exit_code
        if stderr:
            details["stderr"] = stderr.strip()

        super().__init__(message, details=details, **kwargs)


class LineDecodeError(ExtractorError):
    """A line of export output is not valid JSON. Recoverable."""

    def __init__(self, message: str, *, line: str = "", **kwargs: Any) -> None:
        self.line = line
        super().__init__(message, **kwargs)


class MappingConfigError(UserError):
    """Bad mapping shape, or a mapped value that cannot be written."""


class WatermarkResolutionError(UserError):
    """The incremental column could not be resolved to a scalar."""

    def __init__(
        self,
        message: str,
        *,
        column: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.column = column
        details = kwargs.pop("details", {})
        if column:
            details["column"] = column
        super().__init__(message, details=details, **kwargs)


class WriteError(ExtractorError):
    """Output table or state file could not be written."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.cause = cause

        details = kwargs.pop("details", {})
        if cause:
            details["cause"] = str(cause)

        suggestion = kwargs.pop("suggestion", None)
        if not suggestion:
            suggestion = "Check free disk space and permissions of the output directory."

        super().__init__(message, details=details, suggestion=suggestion, **kwargs)


class CodecError(ExtractorError):
    """An extended JSON text transform could not complete. Internal."""

    def __init__(
        self,
        message: str,
        *,
        transform: Optional[str] = None,
        cause: Optional[Exception] = None,
        **kwargs: Any,
    ) -> None:
        self.transform = transform
        self.cause = cause

        details = kwargs.pop("details", {})
        if transform:
            details["transform"] = transform
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)
