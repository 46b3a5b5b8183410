"""Polling directory watcher that reports files once their writes settle."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

Signature = Tuple[int, int]  # (mtime_ns, size)


class DirectoryPoller:
    """Poll `directory` for files matching `pattern`.

    A file is reported when it is first seen or its (mtime, size) changes,
    but only after that signature has held for `debounce_ms`. Files present
    at startup are reported too.
    """

    def __init__(
        self,
        directory: Union[str, Path],
        pattern: str = "*.txt",
        interval_s: float = 2.0,
        debounce_ms: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.directory = Path(directory)
        self.pattern = pattern
        self.interval_s = interval_s
        self.debounce_s = debounce_ms / 1000.0
        self._clock = clock
        self._reported: Dict[Path, Signature] = {}
        self._pending: Dict[Path, Tuple[Signature, float]] = {}

    def _scan(self) -> Dict[Path, Signature]:
        found: Dict[Path, Signature] = {}
        for path in sorted(self.directory.glob(self.pattern)):
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            if path.is_file():
                found[path] = (st.st_mtime_ns, st.st_size)
        return found

    def poll_once(self) -> List[Path]:
        """Return paths whose new content has been stable long enough."""
        now = self._clock()
        found = self._scan()
        ready: List[Path] = []

        for path, sig in found.items():
            if self._reported.get(path) == sig:
                self._pending.pop(path, None)
                continue
            pending = self._pending.get(path)
            if pending is None or pending[0] != sig:
                pending = (sig, now)
                self._pending[path] = pending
            if now - pending[1] >= self.debounce_s:
                ready.append(path)
                self._reported[path] = sig
                del self._pending[path]

        for gone in set(self._reported) - set(found):
            logger.info("File removed: %s", gone)
            del self._reported[gone]
        for gone in set(self._pending) - set(found):
            del self._pending[gone]

        return ready

    def watch(
        self,
        callback: Callable[[Path], object],
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """Call `callback` for each settled file until `stop_event` is set.

        Callbacks run on this thread, one at a time.
        """
        stop = stop_event or threading.Event()
        logger.info("Watching %s for %s", self.directory, self.pattern)
        while not stop.is_set():
            for path in self.poll_once():
                if stop.is_set():
                    break
                callback(path)
            stop.wait(self.interval_s)
        logger.info("File watcher stopped")


__all__ = ["DirectoryPoller"]
