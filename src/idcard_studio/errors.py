"""
Exceptions raised by the studio core.

A marker that is simply not found in an image is not an error: detection
returns an empty list in that case.
"""


class StudioError(Exception):
    """Base class for all studio errors."""


class UnknownIdentity(StudioError, ValueError):
    """Marker identity outside the configured dictionary."""

    def __init__(self, identity: int, dictionary_size: int):
        super().__init__(
            f"Marker identity {identity} is outside the dictionary (0..{dictionary_size - 1})."
        )
        self.identity = identity
        self.dictionary_size = dictionary_size


class DuplicateId(StudioError, ValueError):
    """A field id is already used by another field."""

    def __init__(self, field_id: str):
        super().__init__(f"Field id '{field_id}' is already in use.")
        self.field_id = field_id


class FieldNotFound(StudioError, KeyError):
    """The referenced field id does not exist."""

    def __init__(self, field_id: str):
        super().__init__(field_id)
        self.field_id = field_id

    def __str__(self):
        return f"Field id '{self.field_id}' does not exist."


class InvalidState(StudioError, ValueError):
    """Field list and card data disagree."""


class InvalidPayload(StudioError, ValueError):
    """Barcode text fails the validation rules of its symbol type."""

    def __init__(self, barcode_type: str, reason: str):
        super().__init__(f"{barcode_type}: {reason}")
        self.barcode_type = barcode_type
        self.reason = reason


class ParseFailure(StudioError, ValueError):
    """The canonical document is not well-formed SVG."""
