"""
Missing-value filter for csvscrub.

A record is dropped when any checked field is missing: None, the empty
string, or one of the configured null markers. Whitespace-only values are
kept; they are data, not gaps.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Optional, Sequence

from .parser import Record

if TYPE_CHECKING:
    from .pipeline import CancelToken

logger = logging.getLogger(__name__)


def is_missing(value: Any, null_markers: Iterable[str] = ()) -> bool:
    """Return True if *value* counts as a missing field."""
    if value is None or value == "":
        return True
    return value in null_markers


class Cleaner:
    """
    Drop records that contain a missing field, preserving input order.

    Args:
        required:
            Optional columns to check. If None (default), every column of
            every record is checked.
        null_markers:
            Extra string tokens treated as missing, e.g. ("NULL", "N/A").
            Matching is exact and case-sensitive.
    """

    def __init__(
        self,
        *,
        required: Optional[Sequence[str]] = None,
        null_markers: Iterable[str] = (),
    ) -> None:
        self.required = list(required) if required else None
        self.null_markers = frozenset(null_markers)
        self.seen = 0
        self.kept = 0

    @property
    def dropped(self) -> int:
        return self.seen - self.kept

    def is_complete(self, record: Record) -> bool:
        if self.required is None:
            values = record.values()
        else:
            # A required column absent from the record is missing too.
            values = (record.get(col) for col in self.required)
        return not any(is_missing(v, self.null_markers) for v in values)

    def filter(
        self,
        records: Iterable[Record],
        cancel: Optional["CancelToken"] = None,
    ) -> Iterator[Record]:
        for record in records:
            if cancel is not None:
                cancel.raise_if_cancelled()
            self.seen += 1
            if self.is_complete(record):
                self.kept += 1
                yield record
        logger.debug("cleaner kept %d of %d records", self.kept, self.seen)


def clean(records: Iterable[Record], **kwargs: Any) -> Iterator[Record]:
    """Convenience wrapper: ``Cleaner(**kwargs).filter(records)``."""
    return Cleaner(**kwargs).filter(records)
