"""File-backed fingerprint store adapter.

Implements the core FingerprintStorePort with a line-oriented text file:
one ``fingerprint|unix_timestamp`` record per line. New fingerprints are
appended; evictions and refreshes rewrite the whole file. Every write holds an
exclusive advisory lock so overlapping invocations cannot interleave lines, and
a rewrite re-reads the file under that lock so records appended by another
invocation survive.

I/O failures never abort a tick: an unreadable file behaves like an empty
store, undecodable lines are dropped and failed writes are only logged.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, TextIO, Tuple

from core.config import RetentionConfig

LOGGER = logging.getLogger(__name__)

SEPARATOR = "|"


@contextmanager
def _locked(path: str, mode: str, lock: int) -> Iterator[TextIO]:
    with open(path, mode, encoding="utf-8", errors="replace") as handle:
        fcntl.flock(handle.fileno(), lock)
        try:
            yield handle
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class FileFingerprintStore:
    """Delivered-call fingerprints with a retention horizon."""

    def __init__(
        self,
        path: str,
        config: Optional[RetentionConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = path
        self._config = config or RetentionConfig()
        self._clock = clock
        self._entries: Dict[str, int] = {}
        self._loaded = False

    @property
    def path(self) -> str:
        return self._path

    @property
    def retention_seconds(self) -> float:
        return self._config.retention_hours * 3600

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def _is_expired(self, timestamp: int, now: float) -> bool:
        return timestamp < now - self.retention_seconds

    def _parse(self, lines: List[str], now: float) -> Tuple[Dict[str, int], bool]:
        """Return live entries from raw lines and whether any line was dropped."""

        entries: Dict[str, int] = {}
        dropped = False
        for line in lines:
            line = line.strip()
            if not line:
                continue
            fingerprint, _, raw_timestamp = line.partition(SEPARATOR)
            try:
                timestamp = int(raw_timestamp)
            except ValueError:
                # Legacy records without a timestamp and undecodable lines count as expired.
                dropped = True
                continue
            if self._is_expired(timestamp, now):
                dropped = True
                continue
            entries[fingerprint] = max(timestamp, entries.get(fingerprint, timestamp))
        return entries, dropped

    def _load(self, now: float) -> None:
        """Read the file once, dropping expired and malformed lines."""

        if self._loaded:
            return
        self._loaded = True
        self._entries = {}

        if not os.path.exists(self._path):
            return

        try:
            with _locked(self._path, "r", fcntl.LOCK_SH) as handle:
                lines = handle.read().splitlines()
        except OSError as exc:
            LOGGER.warning("Could not read fingerprint file %s: %s", self._path, exc)
            return

        self._entries, dropped = self._parse(lines, now)
        if dropped:
            self._rewrite(now)

    def _ensure_directory(self) -> None:
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def _rewrite(self, now: float) -> None:
        """Replace the file with the live entries of disk and memory combined.

        The file is re-read under the exclusive lock, so fingerprints appended
        by an overlapping invocation since ``_load`` are kept.
        """

        try:
            self._ensure_directory()
            with _locked(self._path, "a+", fcntl.LOCK_EX) as handle:
                handle.seek(0)
                on_disk, _ = self._parse(handle.read().splitlines(), now)
                for fingerprint, timestamp in on_disk.items():
                    if timestamp > self._entries.get(fingerprint, timestamp - 1):
                        self._entries[fingerprint] = timestamp
                content = "".join(
                    f"{fingerprint}{SEPARATOR}{timestamp}\n" for fingerprint, timestamp in self._entries.items()
                )
                handle.seek(0)
                handle.truncate()
                handle.write(content)
                handle.flush()
        except OSError as exc:
            LOGGER.warning("Could not write fingerprint file %s: %s", self._path, exc)

    def _append(self, fingerprint: str, timestamp: int) -> None:
        try:
            self._ensure_directory()
            with _locked(self._path, "a", fcntl.LOCK_EX) as handle:
                handle.write(f"{fingerprint}{SEPARATOR}{timestamp}\n")
                handle.flush()
        except OSError as exc:
            LOGGER.warning("Could not append to fingerprint file %s: %s", self._path, exc)

    def is_duplicate(self, fingerprint: str, now: Optional[float] = None) -> bool:
        """Return True if the fingerprint was delivered within the retention window."""

        now = self._now(now)
        self._load(now)

        timestamp = self._entries.get(fingerprint)
        if timestamp is None:
            return False
        if self._is_expired(timestamp, now):
            del self._entries[fingerprint]
            self._rewrite(now)
            return False
        return True

    def mark_sent(self, fingerprint: str, now: Optional[float] = None) -> None:
        """Record a delivered fingerprint, refreshing its timestamp if known."""

        now = self._now(now)
        self._load(now)

        timestamp = int(now)
        if fingerprint in self._entries:
            self._entries[fingerprint] = timestamp
            self._rewrite(now)
            return

        self._entries[fingerprint] = timestamp
        self._append(fingerprint, timestamp)

    def cleanup(self, now: Optional[float] = None) -> int:
        """Drop expired fingerprints and return the number removed.

        A file grown beyond ``max_bytes`` is deleted outright; that only
        happens with clock skew or a bug, and the cost is a possible resend.
        """

        now = self._now(now)
        self._load(now)

        expired = [fp for fp, timestamp in self._entries.items() if self._is_expired(timestamp, now)]
        for fingerprint in expired:
            del self._entries[fingerprint]
        if expired:
            self._rewrite(now)

        try:
            size = os.path.getsize(self._path)
        except OSError:
            return len(expired)

        if size > self._config.max_bytes:
            LOGGER.warning("Fingerprint file too large (%s bytes), resetting %s", size, self._path)
            removed = len(expired) + len(self._entries)
            try:
                os.remove(self._path)
            except OSError as exc:
                LOGGER.warning("Could not remove fingerprint file %s: %s", self._path, exc)
            self._entries = {}
            return removed

        return len(expired)

    def __len__(self) -> int:
        self._load(self._clock())
        return len(self._entries)
