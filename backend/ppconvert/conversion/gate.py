"""One-shot download registry for converted artifacts."""
import heapq
import itertools
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional

from ppconvert.conversion.errors import ArtifactNotFound
from ppconvert.conversion.store import ArtifactStore

logger = logging.getLogger("ppconvert.gate")


@dataclass
class _Entry:
    path: Path
    deadline: Optional[float] = None  # time.monotonic() at which the artifact is deleted
    completed: bool = False
    downloads: int = 0


@dataclass
class Download:
    filename: str
    path: Path
    size: int
    stream: BinaryIO = field(repr=False)


class DownloadGate:
    """Serves each registered artifact until shortly after its first download.

    After a download completes the file stays fetchable for `grace_seconds`
    (so a retried or resumed read still works), then it is deleted. An
    artifact nobody downloads is deleted after `ttl_seconds`. All deadlines
    are handled by one reaper thread.
    """

    def __init__(self, store: ArtifactStore, grace_seconds: float = 5.0, ttl_seconds: Optional[float] = 3600.0):
        self._store = store
        self.grace_seconds = grace_seconds
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, _Entry] = {}
        self._deadlines: list[tuple[float, int, str]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._reaper: Optional[threading.Thread] = None
        self._stopping = False

    def register(self, filename: str, path: Path) -> None:
        entry = _Entry(path=Path(path))
        with self._lock:
            self._entries[filename] = entry
            if self.ttl_seconds is not None and self.ttl_seconds > 0:
                self._schedule(filename, entry, self.ttl_seconds)
        logger.debug("Registered %s for download", filename)

    def fetch(self, filename: str) -> Download:
        """Open a registered artifact. The caller closes the stream and calls complete()."""
        with self._lock:
            entry = self._entries.get(filename)
            if entry is None:
                raise ArtifactNotFound(f"{filename} is not available")
            try:
                stream = open(entry.path, "rb")
            except FileNotFoundError:
                self._entries.pop(filename, None)
                raise ArtifactNotFound(f"{filename} is no longer available") from None
            entry.downloads += 1
        # Size from the open handle: it stays readable even if the file is unlinked now.
        size = os.fstat(stream.fileno()).st_size
        return Download(filename=filename, path=entry.path, size=size, stream=stream)

    def complete(self, filename: str) -> None:
        """Delivery finished: schedule deletion after the grace delay (once)."""
        with self._lock:
            entry = self._entries.get(filename)
            if entry is None or entry.completed:
                return
            entry.completed = True
            if self.grace_seconds > 0:
                self._schedule(filename, entry, self.grace_seconds)
                logger.info("Downloaded %s; removing in %ss", filename, self.grace_seconds)
                return
        self.expire(filename)

    def expire(self, filename: str) -> None:
        """Unregister and delete. Safe to call concurrently or repeatedly."""
        with self._lock:
            entry = self._entries.pop(filename, None)
        if entry is None:
            return
        self._store.remove(entry.path)
        logger.info("Removed artifact %s (downloads=%s)", filename, entry.downloads)

    def registered(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def close(self) -> None:
        """Stop the reaper and delete everything still registered."""
        with self._lock:
            self._stopping = True
            self._wakeup.notify_all()
            reaper, self._reaper = self._reaper, None
        if reaper is not None and reaper is not threading.current_thread():
            reaper.join()
        for filename in self.registered():
            self.expire(filename)
        with self._lock:
            self._deadlines.clear()
            self._stopping = False

    def _schedule(self, filename: str, entry: _Entry, delay: float) -> None:
        # Caller holds the lock. A later deadline replaces the earlier one;
        # stale heap items are skipped by the reaper.
        entry.deadline = time.monotonic() + delay
        heapq.heappush(self._deadlines, (entry.deadline, next(self._seq), filename))
        if self._reaper is None or not self._reaper.is_alive():
            self._reaper = threading.Thread(target=self._reap, name="ppconvert-gate-reaper", daemon=True)
            self._reaper.start()
        self._wakeup.notify()

    def _reap(self) -> None:
        while True:
            with self._lock:
                due = None
                while due is None:
                    if self._stopping:
                        return
                    if not self._deadlines:
                        self._wakeup.wait()
                        continue
                    deadline, _, filename = self._deadlines[0]
                    wait = deadline - time.monotonic()
                    if wait > 0:
                        self._wakeup.wait(wait)
                        continue
                    heapq.heappop(self._deadlines)
                    entry = self._entries.get(filename)
                    if entry is not None and entry.deadline == deadline:
                        due = filename
            self.expire(due)
