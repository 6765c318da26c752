# src/csvscrub/options.py

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Mapping

from .errors import ConfigurationError

# Boundary spellings accepted by ParseOptions.from_mapping.
_ALIASES = {
    "delimiter": "delimiter",
    "hasHeader": "has_header",
    "has_header": "has_header",
    "strictParsing": "strict",
    "strict_parsing": "strict",
    "strict": "strict",
    "encoding": "encoding",
    "quotechar": "quotechar",
    "nullMarkers": "null_markers",
    "null_markers": "null_markers",
    "progressEvery": "progress_every",
    "progress_every": "progress_every",
}


@dataclass(frozen=True)
class ParseOptions:
    """
    How to read one delimited-text document.

    delimiter:      single field separator character (default ",")
    has_header:     treat the first row as column names (default True)
    strict:         stop on the first malformed row instead of skipping it
    encoding:       used when the source is a path, bytes or a binary stream
    quotechar:      CSV quote character
    null_markers:   extra tokens that count as missing values (e.g. "NULL")
    progress_every: emit a progress event every N records
    """
    delimiter: str = ","
    has_header: bool = True
    strict: bool = False
    encoding: str = "utf-8-sig"
    quotechar: str = '"'
    null_markers: tuple[str, ...] = ()
    progress_every: int = 1000

    def __post_init__(self) -> None:
        if not isinstance(self.delimiter, str) or len(self.delimiter) != 1:
            raise ConfigurationError("delimiter must be a single character")
        if self.delimiter in ("\r", "\n"):
            raise ConfigurationError("delimiter cannot be a line break")
        if not isinstance(self.quotechar, str) or len(self.quotechar) != 1:
            raise ConfigurationError("quotechar must be a single character")
        if self.delimiter == self.quotechar:
            raise ConfigurationError("delimiter and quotechar must differ")
        if self.progress_every < 1:
            raise ConfigurationError("progress_every must be >= 1")
        # Accept any iterable of markers but store a hashable tuple.
        object.__setattr__(self, "null_markers", tuple(self.null_markers))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "ParseOptions":
        """
        Build options from a plain mapping such as
        ``{"delimiter": ";", "hasHeader": True, "strictParsing": False}``.
        """
        if not mapping:
            return cls()

        kwargs: dict[str, Any] = {}
        for key, value in mapping.items():
            name = _ALIASES.get(key)
            if name is None:
                known = ", ".join(sorted(f.name for f in fields(cls)))
                raise ConfigurationError(f"unknown option {key!r} (known: {known})")
            kwargs[name] = value
        return cls(**kwargs)
