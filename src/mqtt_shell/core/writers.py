"""Sinks that adapt pipeline output for the shell."""

from __future__ import annotations

import codecs
import threading
from typing import Protocol


class TextOutput(Protocol):
    """Anything the shell can append text to."""

    def write(self, text: str, /) -> object: ...


class PrefixWriter:
    """Binary sink that writes ``prefix`` before the first chunk and passes the rest through."""

    def __init__(self, prefix: str, delegate: TextOutput) -> None:
        self.prefix = prefix
        self.delegate = delegate
        self.prefix_written = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        with self._lock:
            self._emit(self._decoder.decode(data))
        return len(data)

    def flush(self) -> None:
        with self._lock:
            self._emit(self._decoder.decode(b"", final=True))

    def _emit(self, text: str) -> None:
        if not text:
            return
        if not self.prefix_written:
            text = self.prefix + text
            self.prefix_written = True
        self.delegate.write(text)
