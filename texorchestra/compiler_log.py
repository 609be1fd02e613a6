"""Raw compiler output sink."""

import logging
import threading

from rich.markup import escape

from texorchestra.utils import console

compiler_logger = logging.getLogger("texorchestra.compiler")


class CompilerLog:
    """
    Collects raw stdout/stderr of toolchain processes.

    Chunks arrive from the supervisor's reader threads, so access is locked.
    The buffer is cleared at the start of each recipe (and optionally before
    every step); it is what a "show compiler log" action points at.
    """

    def __init__(self, echo: bool = False):
        self.echo = echo
        self._chunks: list[str] = []
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        with self._lock:
            self._chunks.append(text)
        compiler_logger.debug(text.rstrip("\n"))
        if self.echo:
            console.print(escape(text), end="", highlight=False)

    def clear(self) -> None:
        with self._lock:
            self._chunks.clear()

    @property
    def text(self) -> str:
        with self._lock:
            return "".join(self._chunks)

    def __call__(self, text: str) -> None:
        self.append(text)
