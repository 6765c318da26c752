"""
Duplicate detection for csvscrub.

- canonical_key: order-independent hashable identity of a record
- row_digest: SHA-256 digest of the canonical key
- count_duplicates_sorted: frequency table of repeated items
- Deduplicator / dedup: drop exact duplicates, first occurrence wins
"""

from __future__ import annotations

import logging
from collections import Counter
from hashlib import sha256
from typing import (
    TYPE_CHECKING,
    Any,
    Hashable,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
)

if TYPE_CHECKING:
    from .pipeline import CancelToken

logger = logging.getLogger(__name__)

CanonicalKey = Tuple[Tuple[str, Optional[str]], ...]

# The ASCII unit separator (0x1F) sits between a column name and its value,
# the record separator (0x1E) between pairs. Neither shows up in normal CSV
# text, which keeps ["ab", "c"] and ["a", "bc"] from hashing alike.
_UNIT_SEP = "\x1f"
_RECORD_SEP = "\x1e"


def canonical_key(record: Mapping[str, Optional[str]]) -> CanonicalKey:
    """
    Return the record's (column, value) pairs sorted by column name.

    Two records built with the same pairs in a different insertion order
    produce the same key.
    """
    return tuple(sorted(record.items()))


def _key_digest(key: Iterable[Tuple[Any, Any]]) -> str:
    payload = _RECORD_SEP.join(
        f"{col}{_UNIT_SEP}{'' if val is None else val}" for col, val in key
    )
    return sha256(payload.encode("utf-8")).hexdigest()


def row_digest(record: Mapping[str, Optional[str]]) -> str:
    """
    SHA-256 hex digest of ``canonical_key(record)``.

    None and "" hash the same.
    """
    return _key_digest(canonical_key(record))


def count_duplicates_sorted(
    items: Iterable[Hashable] | Counter,
    threshold: int = 2,
    reverse: bool = True,
) -> List[Tuple[Hashable, int]]:
    """
    Return (item, count) for items seen at least `threshold` times,
    sorted by count (descending unless `reverse` is False).

    `items` is any iterable of hashables, or a Counter that already
    holds the tallies.
    """
    counter = items if isinstance(items, Counter) else Counter(items)
    duplicates = [(k, v) for k, v in counter.items() if v >= threshold]
    duplicates.sort(key=lambda x: x[1], reverse=reverse)
    return duplicates


class Deduplicator:
    """
    Drop records that exactly duplicate an earlier record.

    The first occurrence of every distinct record is kept, in input order.
    Membership is a hash-set lookup on the record's canonical key, so each
    record costs O(1) on average regardless of how many came before.

    The index belongs to this instance and lives for one run; call close()
    (or let the pipeline do it) to release it.

    Args:
        use_digest:
            Store 64-char SHA-256 digests instead of full canonical keys.
            Saves memory on wide records at the cost of hashing each row.
        track_groups:
            Count occurrences per distinct record so duplicate_report()
            can list the duplicated groups.
    """

    def __init__(self, *, use_digest: bool = False, track_groups: bool = False) -> None:
        self.use_digest = use_digest
        self.track_groups = track_groups
        self.seen = 0
        self.kept = 0
        self._index: set = set()
        self._counts: Counter = Counter()

    @property
    def dropped(self) -> int:
        return self.seen - self.kept

    def key(self, record: Mapping[str, Optional[str]]) -> Hashable:
        if self.use_digest:
            return row_digest(record)
        return canonical_key(record)

    def filter(
        self,
        records: Iterable[Mapping[str, Optional[str]]],
        cancel: Optional["CancelToken"] = None,
    ) -> Iterator[Mapping[str, Optional[str]]]:
        index = self._index
        counts = self._counts if self.track_groups else None
        for record in records:
            if cancel is not None:
                cancel.raise_if_cancelled()
            self.seen += 1
            key = self.key(record)
            if counts is not None:
                counts[key] += 1
            if key in index:
                continue
            index.add(key)
            self.kept += 1
            yield record
        logger.debug("deduplicator kept %d of %d records", self.kept, self.seen)

    def duplicate_report(self, threshold: int = 2) -> List[Tuple[str, int]]:
        """
        Return (digest, count) for every record seen at least `threshold`
        times, most frequent first. Requires track_groups=True.
        """
        if not self.track_groups:
            raise RuntimeError("duplicate_report() needs Deduplicator(track_groups=True)")
        groups = count_duplicates_sorted(self._counts, threshold)
        if self.use_digest:
            return [(str(k), v) for k, v in groups]
        return [(_key_digest(k), v) for k, v in groups]

    def close(self) -> None:
        """Discard the duplicate-detection index."""
        self._index.clear()
        self._counts.clear()


def dedup(records: Iterable[Mapping[str, Optional[str]]], **kwargs: Any) -> Iterator[Mapping[str, Optional[str]]]:
    """Convenience wrapper: ``Deduplicator(**kwargs).filter(records)``."""
    return Deduplicator(**kwargs).filter(records)


