from __future__ import annotations

"""Parser exception hierarchy.

Empty input is deliberately not an error: it yields an empty ParseResult.
"""

__all__ = [
    "TabularError",
    "UnsupportedFormatError",
    "PayloadTooLargeError",
    "ParseFailureError",
]


class TabularError(Exception):
    """Base exception for upload parsing errors."""

    error_type = "PARSE_ERROR"


class UnsupportedFormatError(TabularError):
    """Raised when the format hint is not csv / xls / xlsx."""

    error_type = "UNSUPPORTED_FORMAT"

    def __init__(self, extension: str) -> None:
        self.extension = extension
        super().__init__(f"Unsupported file extension: {extension or '<none>'}")


class PayloadTooLargeError(TabularError):
    """Raised before parsing when the upload exceeds the size ceiling."""

    error_type = "PAYLOAD_TOO_LARGE"

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"upload is {size} bytes, limit is {limit} bytes")


class ParseFailureError(TabularError):
    """Raised when a workbook cannot be read by any read strategy.

    ``__cause__`` holds the exception of the first (strict) attempt.
    """

    error_type = "PARSE_FAILURE"
