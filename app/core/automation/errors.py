"""Error taxonomy of the automation engine.

Every error carries a stable ``code`` that is stored on execution records and
returned to the automation's owner.
"""

from typing import Any


class AutomationError(Exception):
    """Base exception for automation errors."""

    code = "AUTOMATION_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(AutomationError):
    """Static misconfiguration. Never retried: retrying cannot fix it."""

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        if code:
            self.code = code


class InvalidReferenceError(ConfigurationError):
    """A table or field referenced by an automation does not exist."""

    code = "INVALID_REFERENCE"


class TypeMismatchError(ConfigurationError):
    """A value or operator does not fit the field's declared type."""

    code = "TYPE_MISMATCH"


class CoercionError(AutomationError):
    """A value cannot be converted between two field types."""

    code = "COERCION_FAILED"


class FieldMappingError(ConfigurationError):
    """A field mapping failed; the projection is discarded as a whole."""

    code = "MAPPING_ERROR"

    def __init__(
        self,
        message: str,
        mapping_index: int,
        source_field_id: str,
        target_field_id: str,
    ):
        super().__init__(
            message,
            details={
                "mapping_index": mapping_index,
                "source_field_id": source_field_id,
                "target_field_id": target_field_id,
            },
        )
        self.mapping_index = mapping_index
        self.source_field_id = source_field_id
        self.target_field_id = target_field_id


class TransientStoreError(AutomationError):
    """Record store I/O failure worth retrying."""

    code = "TRANSIENT_STORE_ERROR"


class ChainDepthExceeded(AutomationError):
    """A cascade reached the maximum chain depth."""

    code = "CHAIN_DEPTH_EXCEEDED"


class DuplicateRaceDetected(AutomationError):
    """Two writers propagated the same source record concurrently."""

    code = "DUPLICATE_RACE_DETECTED"


class ChainCancelledError(AutomationError):
    """The chain was cancelled between two steps."""

    code = "CHAIN_CANCELLED"
