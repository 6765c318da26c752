"""
Run parser -> cleaner -> deduplicator over one CSV document.

The three stages are chained generators, so records flow through one at a
time and output order always follows input order. A Pipeline runs once and
walks a fixed state machine:

    IDLE -> PARSING -> CLEANING -> DEDUPLICATING -> DONE

FAILED and CANCELLED are terminal and reachable from any non-terminal state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from .cleaning import Cleaner
from .duplicates import Deduplicator
from .errors import (
    Cancelled,
    ConfigurationError,
    CsvScrubError,
    ParseError,
    SourceUnavailable,
)
from .export import CsvSink
from .options import ParseOptions
from .parser import ProgressEvent, Record, RecordParser
from .stats import ProcessingStats, compute_stats

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    IDLE = "idle"
    PARSING = "parsing"
    CLEANING = "cleaning"
    DEDUPLICATING = "deduplicating"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({PipelineState.DONE, PipelineState.FAILED, PipelineState.CANCELLED})

_ABORT = frozenset({PipelineState.FAILED, PipelineState.CANCELLED})

# Forward moves plus abort; terminal states have no entry.
_TRANSITIONS: Dict[PipelineState, FrozenSet[PipelineState]] = {
    PipelineState.IDLE: _ABORT | {PipelineState.PARSING},
    PipelineState.PARSING: _ABORT | {PipelineState.CLEANING},
    PipelineState.CLEANING: _ABORT | {PipelineState.DEDUPLICATING},
    PipelineState.DEDUPLICATING: _ABORT | {PipelineState.DONE},
}


class CancelToken:
    """
    Cooperative cancellation flag, checked between records.

    cancel() may be called from another thread or a signal handler.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("pipeline cancelled")


@dataclass
class PipelineResult:
    """
    Outcome of one run.

    stats is set only when state is DONE. error holds the fatal error
    (SourceUnavailable, ParseError, ConfigurationError or Cancelled)
    otherwise. row_errors lists
    malformed rows that were skipped in non-strict mode.
    """
    state: PipelineState
    stats: Optional[ProcessingStats] = None
    columns: Optional[List[str]] = None
    records: Optional[List[Record]] = None
    row_errors: List[ParseError] = field(default_factory=list)
    error: Optional[CsvScrubError] = None
    duplicate_report: Optional[List[Tuple[str, int]]] = None

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def is_empty(self) -> bool:
        """True when the run finished without a single parsed record."""
        return self.ok and self.stats is not None and self.stats.total_records == 0


class Pipeline:
    """
    One run of the cleaning pipeline over *source*.

    Args:
        source:
            Path, bytes, binary stream or text stream (see open_source).
        options:
            ParseOptions, or a mapping accepted by ParseOptions.from_mapping.
        required:
            Columns the cleaner checks. None checks every column.
        use_digest / track_groups:
            Passed to Deduplicator.
        on_progress:
            Called with ProgressEvent from the parser stage.
        on_state:
            Called with (old_state, new_state) on every transition.
        cancel:
            CancelToken checked at every record boundary.
    """

    def __init__(
        self,
        source: Any,
        options: ParseOptions | Mapping[str, Any] | None = None,
        *,
        required: Optional[Sequence[str]] = None,
        use_digest: bool = False,
        track_groups: bool = False,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        on_state: Optional[Callable[[PipelineState, PipelineState], None]] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        if options is None or isinstance(options, ParseOptions):
            self.options = options or ParseOptions()
        else:
            self.options = ParseOptions.from_mapping(options)

        self.source = source
        self.required = required
        self.use_digest = use_digest
        self.track_groups = track_groups
        self.on_progress = on_progress
        self.on_state = on_state
        self.cancel = cancel or CancelToken()
        self.state = PipelineState.IDLE

    def _advance(self, new: PipelineState) -> None:
        allowed = _TRANSITIONS.get(self.state, frozenset())
        if new not in allowed:
            raise RuntimeError(f"illegal pipeline transition {self.state.name} -> {new.name}")
        old, self.state = self.state, new
        logger.debug("pipeline %s -> %s", old.name, new.name)
        if self.on_state is not None:
            self.on_state(old, new)

    def _check_required(self, columns: Optional[List[str]]) -> None:
        # An empty document has no header to check against.
        if not self.required or columns is None:
            return
        unknown = [c for c in self.required if c not in columns]
        if unknown:
            raise ConfigurationError(
                f"required column(s) not in header: {', '.join(unknown)}"
            )

    def run(self, *, materialize: bool = False, output: Any = None) -> PipelineResult:
        """
        Process the source once.

        Args:
            materialize:
                Keep the surviving records in ``result.records``.
            output:
                Path or text stream; surviving records are written there as
                CSV, in header order, while the run progresses.

        Returns:
            PipelineResult. Expected failures (missing source, malformed
            row in strict mode, a required column missing from the header,
            cancellation) are reported in
            ``result.error`` rather than raised.
        """
        if self.state is not PipelineState.IDLE:
            raise RuntimeError("a Pipeline can only be run once")

        parser = RecordParser(
            self.source,
            self.options,
            on_progress=self.on_progress,
            cancel=self.cancel,
        )
        cleaner = Cleaner(required=self.required, null_markers=self.options.null_markers)
        deduplicator = Deduplicator(use_digest=self.use_digest, track_groups=self.track_groups)
        kept: Optional[List[Record]] = [] if materialize else None
        sink: Optional[CsvSink] = None

        try:
            self._advance(PipelineState.PARSING)
            parser.open()
            self.cancel.raise_if_cancelled()
            self._check_required(parser.columns)
            columns = parser.columns or []
            if output is not None:
                sink = CsvSink(output, columns, delimiter=self.options.delimiter)

            self._advance(PipelineState.CLEANING)
            complete = cleaner.filter(parser, cancel=self.cancel)

            self._advance(PipelineState.DEDUPLICATING)
            for record in deduplicator.filter(complete, cancel=self.cancel):
                if kept is not None:
                    kept.append(record)
                if sink is not None:
                    sink.write(record)
            self.cancel.raise_if_cancelled()

            stats = compute_stats(
                parser.records_read,
                deduplicator.kept,
                complete=cleaner.kept,
                malformed=parser.rows_skipped,
            )
            report = deduplicator.duplicate_report() if self.track_groups else None
            self._advance(PipelineState.DONE)
            logger.info(
                "processed %d records: %d kept, %.2f%% removed, %d malformed rows skipped",
                stats.total_records,
                stats.cleaned_records,
                stats.optimization_gain_percent,
                stats.malformed_rows,
            )
            return PipelineResult(
                state=self.state,
                stats=stats,
                columns=parser.columns,
                records=kept,
                row_errors=list(parser.errors),
                duplicate_report=report,
            )
        except Cancelled as exc:
            logger.info("pipeline cancelled in state %s", self.state.name)
            self._advance(PipelineState.CANCELLED)
            return PipelineResult(
                state=self.state,
                columns=parser.columns,
                row_errors=list(parser.errors),
                error=exc,
            )
        except (SourceUnavailable, ParseError, ConfigurationError) as exc:
            logger.error("pipeline failed in state %s: %s", self.state.name, exc)
            self._advance(PipelineState.FAILED)
            return PipelineResult(
                state=self.state,
                columns=parser.columns,
                row_errors=list(parser.errors),
                error=exc,
            )
        except Exception:
            logger.exception("pipeline failed unexpectedly in state %s", self.state.name)
            if not self.state.terminal:
                self._advance(PipelineState.FAILED)
            raise
        finally:
            parser.close()
            deduplicator.close()
            if sink is not None:
                sink.close()


def process_csv(
    source: Any,
    options: ParseOptions | Mapping[str, Any] | None = None,
    *,
    materialize: bool = False,
    output: Any = None,
    **kwargs: Any,
) -> PipelineResult:
    """Build a Pipeline for *source* and run it once."""
    return Pipeline(source, options, **kwargs).run(materialize=materialize, output=output)
