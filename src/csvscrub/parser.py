"""
Streaming record parser for csvscrub.

Reads one delimited-text document line by line with the standard ``csv``
module and yields one ``dict`` per data row, keyed by the header. Malformed
rows become ParseError values instead of stopping the stream, unless strict
parsing is requested.
"""

from __future__ import annotations

import csv
import io
import logging
import os
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    TextIO,
)

from .errors import ParseError, SourceUnavailable
from .options import ParseOptions

if TYPE_CHECKING:
    from .pipeline import CancelToken

logger = logging.getLogger(__name__)

Record = Dict[str, Optional[str]]


@dataclass(frozen=True)
class ProgressEvent:
    """Advisory progress snapshot; byte fields are None when unknown."""
    records_processed: int
    bytes_processed: Optional[int] = None
    total_bytes: Optional[int] = None

    @property
    def fraction(self) -> Optional[float]:
        if not self.total_bytes or self.bytes_processed is None:
            return None
        return min(1.0, self.bytes_processed / self.total_bytes)


def _stream_size(stream: Any) -> Optional[int]:
    try:
        return os.fstat(stream.fileno()).st_size
    except (AttributeError, OSError, io.UnsupportedOperation):
        pass
    try:
        if stream.seekable():
            pos = stream.tell()
            end = stream.seek(0, io.SEEK_END)
            stream.seek(pos)
            return end - pos
    except (AttributeError, OSError, io.UnsupportedOperation):
        pass
    return None


@contextmanager
def open_source(source: Any, encoding: str = "utf-8-sig") -> Iterator[TextIO]:
    """
    Open *source* as a text stream suitable for ``csv.reader``.

    Accepted sources:
      - a filesystem path (str or os.PathLike): opened and closed here
      - bytes / bytearray: decoded with *encoding*
      - a binary stream: wrapped, but left open for the caller
      - a text stream: used as-is, left open for the caller

    Raises SourceUnavailable when there is nothing to read.
    """
    if source is None:
        raise SourceUnavailable(source, "no input source given")

    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        if not path.is_file():
            raise SourceUnavailable(source, "file not found")
        try:
            handle = path.open("r", encoding=encoding, newline="")
        except (OSError, LookupError) as exc:
            raise SourceUnavailable(source, str(exc)) from exc
        with handle:
            yield handle
        return

    if isinstance(source, (bytes, bytearray)):
        try:
            wrapper = io.TextIOWrapper(io.BytesIO(bytes(source)), encoding=encoding, newline="")
        except LookupError as exc:
            raise SourceUnavailable("<bytes>", str(exc)) from exc
        with wrapper:
            yield wrapper
        return

    if not hasattr(source, "read"):
        raise SourceUnavailable(source, f"unsupported source type {type(source).__name__}")

    try:
        head = source.read(0)
    except (OSError, ValueError) as exc:
        raise SourceUnavailable(source, str(exc)) from exc

    if isinstance(head, str):
        yield source
        return

    try:
        wrapper = io.TextIOWrapper(source, encoding=encoding, newline="")
    except (LookupError, AttributeError) as exc:
        raise SourceUnavailable(source, str(exc)) from exc
    try:
        yield wrapper
    finally:
        # Hand the binary stream back to the caller unclosed.
        wrapper.detach()


class RecordParser:
    """
    Lazy, single-pass sequence of records read from one CSV document.

    Use it as an iterable (the source is opened and closed around the
    iteration) or as a context manager when the header is needed before the
    first record::

        with RecordParser("data.csv") as parser:
            print(parser.columns)
            for record in parser:
                ...

    Non-strict mode skips malformed rows and keeps them in ``errors``.
    """

    def __init__(
        self,
        source: Any,
        options: Optional[ParseOptions] = None,
        *,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        on_error: Optional[Callable[[ParseError], None]] = None,
        cancel: Optional["CancelToken"] = None,
    ) -> None:
        self.source = source
        self.options = options or ParseOptions()
        self.on_progress = on_progress
        self.on_error = on_error
        self.cancel = cancel

        self.columns: Optional[List[str]] = None
        self.errors: List[ParseError] = []
        self.records_read = 0

        self._stack: Optional[ExitStack] = None
        self._handle: Optional[TextIO] = None
        self._reader: Any = None
        self._pending: Optional[List[str]] = None
        self._row_number = 0
        self._total_bytes: Optional[int] = None
        self._exhausted = False

    # -------------------------
    # Lifecycle
    # -------------------------

    def __enter__(self) -> "RecordParser":
        self.open()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def open(self) -> None:
        """Open the source and read the header row."""
        if self._stack is not None:
            return
        stack = ExitStack()
        try:
            self._handle = stack.enter_context(open_source(self.source, self.options.encoding))
            self._total_bytes = self._guess_total_bytes()
            self._reader = csv.reader(
                self._handle,
                delimiter=self.options.delimiter,
                quotechar=self.options.quotechar,
                strict=True,
            )
            self._stack = stack
            self._read_header()
        except BaseException:
            self._stack = None
            stack.close()
            raise

    def close(self) -> None:
        """Release the source. Safe to call more than once."""
        if self._stack is not None:
            self._stack.close()
            self._stack = None
        self._reader = None
        self._handle = None
        self._exhausted = True

    @property
    def rows_skipped(self) -> int:
        return len(self.errors)

    # -------------------------
    # Iteration
    # -------------------------

    def __iter__(self) -> Iterator[Record]:
        if self._exhausted:
            return
        if self._stack is None:
            with self:
                yield from self._records()
        else:
            yield from self._records()

    def _records(self) -> Iterator[Record]:
        columns = self.columns
        if columns is None:
            # Empty document: no header, no records.
            self._emit_progress()
            self._exhausted = True
            return

        width = len(columns)
        every = self.options.progress_every

        while True:
            if self.cancel is not None:
                self.cancel.raise_if_cancelled()

            if self._pending is not None:
                row, self._pending = self._pending, None
            else:
                try:
                    row = self._next_row()
                except csv.Error as exc:
                    self._row_number += 1
                    self._malformed(ParseError(self._row_number, str(exc), self._reader.line_num))
                    continue
                if row is None:
                    break
            self._row_number += 1

            if len(row) != width:
                self._malformed(
                    ParseError(
                        self._row_number,
                        f"expected {width} fields, got {len(row)}",
                        self._reader.line_num,
                    )
                )
                continue

            self.records_read += 1
            yield dict(zip(columns, row))

            if self.records_read % every == 0:
                self._emit_progress()

        # Final event, unless the last periodic one already covered it.
        if self.records_read == 0 or self.records_read % every != 0:
            self._emit_progress()
        self._exhausted = True

    # -------------------------
    # Internals
    # -------------------------

    def _next_row(self) -> Optional[List[str]]:
        """Return the next non-blank row, or None at end of input."""
        while True:
            try:
                row = next(self._reader)
            except StopIteration:
                return None
            except UnicodeDecodeError as exc:
                raise SourceUnavailable(self.source, f"cannot decode input: {exc}") from exc
            except OSError as exc:
                raise SourceUnavailable(self.source, str(exc)) from exc
            if row:
                return row

    def _read_header(self) -> None:
        try:
            first = self._next_row()
        except csv.Error as exc:
            raise ParseError(0, f"unreadable header: {exc}", self._reader.line_num) from exc

        if first is None:
            logger.info("source %r is empty", self.source)
            return

        if not self.options.has_header:
            self.columns = [f"Column_{i + 1}" for i in range(len(first))]
            self._pending = first
            return

        columns: List[str] = []
        for i, name in enumerate(first):
            if name == "":
                name = f"Column_{i + 1}"
                logger.warning("empty column name at position %d renamed to %r", i + 1, name)
            columns.append(name)

        seen = set()
        for name in columns:
            if name in seen:
                raise ParseError(0, f"duplicate column name {name!r}", self._reader.line_num)
            seen.add(name)

        self.columns = columns

    def _malformed(self, error: ParseError) -> None:
        if self.options.strict:
            raise error
        logger.warning("skipping malformed %s", error)
        self.errors.append(error)
        if self.on_error is not None:
            self.on_error(error)

    def _guess_total_bytes(self) -> Optional[int]:
        src = self.source
        if isinstance(src, (str, os.PathLike)):
            try:
                return Path(src).stat().st_size
            except OSError:
                return None
        if isinstance(src, (bytes, bytearray)):
            return len(src)
        if isinstance(src, io.TextIOBase):
            return None
        if hasattr(src, "read"):
            return _stream_size(src)
        return None

    def _bytes_processed(self) -> Optional[int]:
        buffer = getattr(self._handle, "buffer", None)
        if buffer is None:
            return None
        try:
            return buffer.tell()
        except (OSError, ValueError, io.UnsupportedOperation):
            return None

    def _emit_progress(self) -> None:
        if self.on_progress is None:
            return
        self.on_progress(
            ProgressEvent(
                records_processed=self.records_read,
                bytes_processed=self._bytes_processed(),
                total_bytes=self._total_bytes,
            )
        )


def parse_records(
    source: Any,
    options: Optional[ParseOptions] = None,
    **kwargs: Any,
) -> Iterator[Record]:
    """Shorthand for ``iter(RecordParser(source, options, **kwargs))``."""
    return iter(RecordParser(source, options, **kwargs))
