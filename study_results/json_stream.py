"""Incremental JSON writer.

Writes nested arrays and objects piece by piece to a text stream so large
documents never exist as an in-memory tree. Separators are inserted
between siblings only, so the output stays valid no matter how many
elements end up being skipped by the caller.
"""

from __future__ import annotations

import json
from typing import Any, List, Optional, TextIO


class JsonStreamWriter:
    """Streaming JSON generator over a text stream."""

    def __init__(self, fp: TextIO, separator: str = ","):
        self.fp = fp
        self.separator = separator
        # One flag per open container: True while it has no elements yet
        self._empty: List[bool] = []
        self._closers: List[str] = []

    @property
    def depth(self) -> int:
        return len(self._empty)

    def _prefix(self, key: Optional[str]) -> None:
        if self._empty:
            if not self._empty[-1]:
                self.fp.write(self.separator)
            self._empty[-1] = False
        if key is not None:
            self.fp.write(json.dumps(key) + ":")

    def start_array(self, key: Optional[str] = None) -> None:
        self._prefix(key)
        self.fp.write("[")
        self._empty.append(True)
        self._closers.append("]")

    def end_array(self) -> None:
        self._empty.pop()
        self.fp.write(self._closers.pop())

    def start_object(self, key: Optional[str] = None) -> None:
        self._prefix(key)
        self.fp.write("{")
        self._empty.append(True)
        self._closers.append("}")

    def end_object(self) -> None:
        self._empty.pop()
        self.fp.write(self._closers.pop())

    def close(self, depth: int = 0) -> None:
        """Close open arrays and objects until only ``depth`` remain open."""
        while len(self._empty) > depth:
            self._empty.pop()
            self.fp.write(self._closers.pop())

    def field(self, key: str, value: Any) -> None:
        """Write ``"key": value`` into the current object."""
        self._prefix(key)
        self.fp.write(json.dumps(value))

    def value(self, value: Any) -> None:
        """Append a JSON-serializable value to the current array."""
        self._prefix(None)
        self.fp.write(json.dumps(value))

    def raw(self, text: str, key: Optional[str] = None) -> None:
        """Append already serialized JSON."""
        self._prefix(key)
        self.fp.write(text)
