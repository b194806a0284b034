"""
Custom exceptions for b64pipe.

This module defines the exceptions raised while locating, validating and
decoding Base64 payloads. Validation and extraction errors are local to one
payload; source read errors are fatal to a run; sink write errors abort the
affected payload only.
"""

from typing import Any, List, Optional

from b64pipe.models import ErrorKind


class B64PipeError(Exception):
    """Base exception for all b64pipe-specific errors."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def offset(self) -> Optional[int]:
        """Character offset the error refers to, if any."""
        return self.details.get("offset")

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Payload Validation Exceptions
# =============================================================================


class PayloadValidationError(B64PipeError):
    """Base exception for payloads rejected by validation or decoding."""

    pass


class InvalidCharacterError(PayloadValidationError):
    """Payload contains a character outside the alphabet or misplaced padding."""

    kind = ErrorKind.INVALID_CHARACTER

    def __init__(self, offset: int, character: str, reason: Optional[str] = None) -> None:
        """Initialize with the offending position."""
        message = f"Invalid character {character!r} at offset {offset}"
        if reason:
            message += f": {reason}"
        super().__init__(message, {"offset": offset, "character": character})


class InvalidLengthError(PayloadValidationError):
    """Payload length is not a multiple of 4 and cannot be repaired."""

    kind = ErrorKind.INVALID_LENGTH

    def __init__(self, length: int, repairable: bool = True) -> None:
        """Initialize with the cleaned payload length."""
        message = f"Payload length {length} is not a multiple of 4"
        if not repairable:
            message += " (final group holds a single symbol)"
        super().__init__(message, {"length": length})


# =============================================================================
# Extraction Exceptions
# =============================================================================


class ExtractionError(B64PipeError):
    """Base exception for payload extraction errors."""

    pass


class MalformedDocumentError(ExtractionError):
    """A structured document could not be scanned."""

    kind = ErrorKind.MALFORMED_DOCUMENT

    def __init__(self, offset: int, reason: str) -> None:
        """Initialize with scan position and reason."""
        message = f"Malformed document at offset {offset}: {reason}"
        super().__init__(message, {"offset": offset, "reason": reason})


class NoPayloadFoundError(ExtractionError):
    """No payload span was located in the source."""

    kind = ErrorKind.NO_PAYLOAD_FOUND

    def __init__(self, source_id: str) -> None:
        """Initialize with the source identifier."""
        message = f"No Base64 payload found in '{source_id}'"
        super().__init__(message, {"source_id": source_id})


class UnsupportedExtractorError(ExtractionError):
    """Requested extractor kind is not registered."""

    def __init__(self, kind: str, supported: List[str]) -> None:
        """Initialize with kind information."""
        message = f"Extractor '{kind}' not supported. Supported kinds: {', '.join(supported)}"
        super().__init__(message, {"kind": kind, "supported": supported})


# =============================================================================
# I/O Exceptions
# =============================================================================


class SourceReadError(B64PipeError):
    """Input source is missing or unreadable."""

    kind = ErrorKind.SOURCE_READ_ERROR

    def __init__(self, source_id: str, reason: str) -> None:
        """Initialize with source information."""
        message = f"Cannot read source '{source_id}': {reason}"
        super().__init__(message, {"source_id": source_id, "reason": reason})


class SinkWriteError(B64PipeError):
    """Writing decoded bytes to the output sink failed."""

    kind = ErrorKind.SINK_WRITE_ERROR

    def __init__(self, destination: str, reason: str) -> None:
        """Initialize with sink information."""
        message = f"Cannot write to '{destination}': {reason}"
        super().__init__(message, {"destination": destination, "reason": reason})


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigurationError(B64PipeError):
    """Configuration error."""

    pass
