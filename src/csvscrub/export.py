"""
Write processed records back out, as CSV or as a pandas DataFrame.
"""

from __future__ import annotations

import csv
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence, TextIO

import pandas as pd


@contextmanager
def _open_dest(dest: Any) -> Iterator[TextIO]:
    if isinstance(dest, (str, os.PathLike)):
        path = Path(dest)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as handle:
            yield handle
    else:
        yield dest


class CsvSink:
    """
    Incremental CSV writer: header first, then one row per write() call.

    *dest* is a path (created and closed here) or an open text stream
    (left open).
    """

    def __init__(self, dest: Any, columns: Sequence[str], *, delimiter: str = ",") -> None:
        self.dest = dest
        self.columns = list(columns)
        self.delimiter = delimiter
        self.rows_written = 0
        self._cm = _open_dest(dest)
        handle = self._cm.__enter__()
        self._writer = csv.DictWriter(
            handle,
            fieldnames=self.columns,
            delimiter=delimiter,
            lineterminator="\n",
        )
        self._writer.writeheader()

    def write(self, record: Mapping[str, Optional[str]]) -> None:
        self._writer.writerow(record)
        self.rows_written += 1

    def close(self) -> None:
        if self._cm is not None:
            self._cm.__exit__(None, None, None)
            self._cm = None

    def __enter__(self) -> "CsvSink":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def write_csv(
    records: Iterable[Mapping[str, Optional[str]]],
    columns: Sequence[str],
    dest: Any,
    *,
    delimiter: str = ",",
) -> int:
    """Write *records* to *dest* in *columns* order. Returns the row count."""
    with CsvSink(dest, columns, delimiter=delimiter) as sink:
        for record in records:
            sink.write(record)
        return sink.rows_written


def records_to_frame(
    records: Iterable[Mapping[str, Optional[str]]],
    columns: Sequence[str],
) -> pd.DataFrame:
    """Materialize records as a DataFrame of pandas ``string`` columns."""
    df = pd.DataFrame.from_records(list(records), columns=list(columns))
    return df.astype("string")
