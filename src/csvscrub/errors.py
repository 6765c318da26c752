"""
Error kinds raised or reported by csvscrub.

Row-level problems are ParseError values: the parser collects them and keeps
going unless strict parsing is on. Everything else stops the pipeline.
"""

from __future__ import annotations

from typing import Any, Optional


class CsvScrubError(Exception):
    """Base class for all csvscrub errors."""


class ConfigurationError(CsvScrubError, ValueError):
    """Invalid parser or pipeline configuration."""


class SourceUnavailable(CsvScrubError):
    """The input source is missing, unreadable, or cannot be decoded."""

    def __init__(self, source: Any, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"cannot read {source!r}: {reason}")


class ParseError(CsvScrubError):
    """
    A malformed row.

    Attributes:
        row:
            1-based data row number (0 means the header row).
        reason:
            Human-readable description of the problem.
        line:
            Physical line number in the source where the row ended, when known.
    """

    def __init__(self, row: int, reason: str, line: Optional[int] = None) -> None:
        self.row = row
        self.reason = reason
        self.line = line
        where = f"row {row}" if line is None else f"row {row} (line {line})"
        super().__init__(f"{where}: {reason}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParseError):
            return NotImplemented
        return (self.row, self.reason, self.line) == (other.row, other.reason, other.line)

    def __hash__(self) -> int:
        return hash((self.row, self.reason, self.line))


class Cancelled(CsvScrubError):
    """Cooperative cancellation was requested while the pipeline was running."""
