"""
Errors and Warnings
===================

Exception and warning types raised by the flattening and reconciliation stages.
"""

from typing import Any


class ParseError(ValueError):
    """
    Raised when a nested-column cell cannot be decoded.

    Attributes:
        column: Name of the nested column being parsed
        row: Positional row index of the offending cell
        raw: The raw cell text
    """

    def __init__(self, column: str, row: int, raw: Any, reason: str = ""):
        self.column = column
        self.row = row
        self.raw = raw
        self.reason = reason

        preview = str(raw)
        if len(preview) > 80:
            preview = preview[:77] + "..."

        message = f"Cannot parse column '{column}' at row {row}: {preview!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class SchemaMismatchWarning(UserWarning):
    """A column exists in only one of two flattened tables without being allowed to."""
