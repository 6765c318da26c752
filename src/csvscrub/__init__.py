"""
csvscrub: drop incomplete and duplicate rows from CSV files, one pass.

Current submodules:
- csvscrub.parser (streaming record parser)
- csvscrub.cleaning (missing-value filter)
- csvscrub.duplicates (canonical keys and the streaming deduplicator)
- csvscrub.stats (processing stats)
- csvscrub.pipeline (state machine tying the stages together)
- csvscrub.cli (CLI entrypoint)
"""

from .cleaning import Cleaner, clean, is_missing
from .duplicates import (
    Deduplicator,
    canonical_key,
    count_duplicates_sorted,
    dedup,
    row_digest,
)
from .errors import (
    Cancelled,
    ConfigurationError,
    CsvScrubError,
    ParseError,
    SourceUnavailable,
)
from .export import records_to_frame, write_csv
from .options import ParseOptions
from .parser import ProgressEvent, RecordParser, parse_records
from .pipeline import (
    CancelToken,
    Pipeline,
    PipelineResult,
    PipelineState,
    process_csv,
)
from .stats import ProcessingStats, compute_stats

__all__ = [
    "Cleaner",
    "clean",
    "is_missing",
    "Deduplicator",
    "canonical_key",
    "count_duplicates_sorted",
    "dedup",
    "row_digest",
    "Cancelled",
    "ConfigurationError",
    "CsvScrubError",
    "ParseError",
    "SourceUnavailable",
    "records_to_frame",
    "write_csv",
    "ParseOptions",
    "ProgressEvent",
    "RecordParser",
    "parse_records",
    "CancelToken",
    "Pipeline",
    "PipelineResult",
    "PipelineState",
    "process_csv",
    "ProcessingStats",
    "compute_stats",
]
