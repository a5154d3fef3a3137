"""Exceptions raised by bundlemap.

Only unparseable payloads are raised. Missing or malformed records inside an
otherwise valid compilation never surface as exceptions; they show up in the
report as placeholders or as absent optional sizes.
"""

from typing import Dict, Optional


class BundleMapError(Exception):
    """Base exception for all bundlemap errors."""

    def __init__(self, message: str, details: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ParseError(BundleMapError):
    """A stats payload (or one entry of it) is not a recognizable compilation.

    Attributes:
        entry: Location of the offending entry inside the payload, e.g.
            ``"[1]"`` or ``"children[0]"``. ``None`` for the payload itself.
        expected: Short description of the structure that was expected.
    """

    def __init__(
        self,
        message: str,
        entry: Optional[str] = None,
        expected: Optional[str] = None,
    ):
        details = {}
        if entry is not None:
            details["entry"] = entry
        if expected is not None:
            details["expected"] = expected
        super().__init__(message, details)
        self.entry = entry
        self.expected = expected
