# src/csvscrub/stats.py

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ProcessingStats:
    """
    Summary of one pipeline run.

    total_records:             records produced by the parser
    cleaned_records:           records left after cleaning and deduplication
    optimization_gain_percent: share of records removed, 0.0 for empty input
    complete_records:          records left after cleaning only
    malformed_rows:            rows the parser skipped (not part of total_records)
    """
    total_records: int
    cleaned_records: int
    optimization_gain_percent: float
    complete_records: Optional[int] = None
    malformed_rows: int = 0

    @property
    def removed_records(self) -> int:
        return self.total_records - self.cleaned_records

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compute_stats(
    total: int,
    cleaned: int,
    *,
    complete: Optional[int] = None,
    malformed: int = 0,
) -> ProcessingStats:
    """
    Build ProcessingStats from stage counts.

    Raises ValueError for negative counts or when a later stage reports
    more records than an earlier one.
    """
    for name, value in (("total", total), ("cleaned", cleaned), ("malformed", malformed)):
        if value < 0:
            raise ValueError(f"{name} count cannot be negative: {value}")
    if complete is not None and not cleaned <= complete <= total:
        raise ValueError(
            f"complete count {complete} must lie between cleaned ({cleaned}) and total ({total})"
        )
    if cleaned > total:
        raise ValueError(f"cleaned count {cleaned} exceeds total {total}")

    gain = 0.0 if total == 0 else (total - cleaned) / total * 100
    return ProcessingStats(
        total_records=total,
        cleaned_records=cleaned,
        optimization_gain_percent=gain,
        complete_records=complete,
        malformed_rows=malformed,
    )
