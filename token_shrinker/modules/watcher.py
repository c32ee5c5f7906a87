"""
TokenShrinker - Change Watcher

Directory watcher driving the FileSummarizer:
- watchdog events feed a deduplicated pending set of absolute paths
- a fixed-cadence tick (default 2s) takes the whole pending set, filters
  ignorable paths and summarizes the rest one by one
- ticks never overlap; a tick that fires while a batch is running is a
  no-op and leaves newly queued paths for the next tick
- startup queues every matching existing file so a cold cache fills up,
  and every cached path whose file is gone so its summary is dropped
- a deleted or moved-away directory queues the cached paths below it
"""

from __future__ import annotations

import fnmatch
import os
import signal
import threading
import time
from pathlib import Path
from typing import List, Optional, Set

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import WatcherSettings
from .schemas import BatchReport
from .summarizer import FileSummarizer

# Directory names that are never summarized, wherever they appear.
IGNORED_DIRS = frozenset({"node_modules", "dist", "build", "vendor", ".git", "cache", "logs", "__pycache__"})


def glob_match(rel_path: str, pattern: str) -> bool:
    """fnmatch with `**/` also matching at the top level."""
    if fnmatch.fnmatch(rel_path, pattern):
        return True
    return pattern.startswith("**/") and fnmatch.fnmatch(rel_path, pattern[3:])


# =============================================================================
# EVENT HANDLER
# =============================================================================


class ChangeEventHandler(FileSystemEventHandler):
    """Queues every touched file path on the watcher. Filtering happens at tick time.

    A directory that is deleted or moved away can arrive as one directory
    event with no per-file events, so every cached path below it is queued
    and the summarizer cleans up whatever no longer exists.
    """

    def __init__(self, watcher: "ChangeWatcher") -> None:
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in ("created", "modified", "deleted", "moved"):
            return

        dest = getattr(event, "dest_path", None)

        if event.is_directory:
            if event.event_type in ("deleted", "moved"):
                logger.debug(f"Directory event: {event.event_type} - {event.src_path}")
                self.watcher.add_cached_under(str(event.src_path))
                if dest:
                    self.watcher.add_cached_under(str(dest))
            return

        logger.debug(f"File event: {event.event_type} - {event.src_path}")
        self.watcher.add_pending(str(event.src_path))
        if dest:
            self.watcher.add_pending(str(dest))


# =============================================================================
# CHANGE WATCHER
# =============================================================================


class ChangeWatcher:
    """
    Batches filesystem changes and runs them through a FileSummarizer.

    `tick()` is safe to call from any thread: the pending set and the busy
    flag are guarded by one lock, and only one batch runs at a time.
    """

    def __init__(
        self,
        root: Path | str,
        summarizer: FileSummarizer,
        settings: Optional[WatcherSettings] = None,
        summaries_dir: Optional[Path | str] = None,
    ) -> None:
        settings = settings or WatcherSettings()
        self.root = Path(root).resolve()
        self.summarizer = summarizer
        self.interval_seconds = settings.interval_seconds
        self.include: List[str] = list(settings.include)
        self.ignore: List[str] = list(settings.ignore)
        self.summaries_dir = Path(summaries_dir or summarizer.cache.summaries_dir).resolve()

        self._lock = threading.Lock()
        self._pending: Set[str] = set()
        self._busy = False

        self.observer: Optional[Observer] = None
        self._stop = threading.Event()
        self._ticker: Optional[threading.Thread] = None
        self._workers: List[threading.Thread] = []

    # -------------------------------------------------------------------------
    # Pending set
    # -------------------------------------------------------------------------

    def add_pending(self, path: str) -> None:
        with self._lock:
            self._pending.add(os.path.abspath(path))

    def add_cached_under(self, abs_dir: str) -> int:
        """Queue every cached path at or below `abs_dir`. Returns the number queued."""
        rel = self._relative(abs_dir)
        if rel is None:
            return 0
        prefix = "" if rel == "." else f"{rel}/"

        with self.summarizer.cache.transaction() as store:
            keys = [key for key in store if key.startswith(prefix)]

        for key in keys:
            self.add_pending(str(self.root / key))
        if keys:
            logger.debug(f"Queued {len(keys)} cached paths under {rel}")
        return len(keys)

    def pending(self) -> Set[str]:
        with self._lock:
            return set(self._pending)

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._busy

    # -------------------------------------------------------------------------
    # Filtering
    # -------------------------------------------------------------------------

    def _relative(self, abs_path: str) -> Optional[str]:
        try:
            return Path(abs_path).resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def should_process(self, abs_path: str) -> bool:
        """Check path against ignored directories, ignore globs and include globs."""
        path = Path(abs_path).resolve()
        if path == self.summaries_dir or self.summaries_dir in path.parents:
            return False

        rel = self._relative(abs_path)
        if rel is None:
            return False

        dir_parts = rel.split("/")[:-1]
        if any(part in IGNORED_DIRS or part.startswith(".") for part in dir_parts):
            return False

        if any(glob_match(rel, pattern) for pattern in self.ignore):
            return False

        return any(glob_match(rel, pattern) for pattern in self.include)

    def scan_existing(self) -> int:
        """Queue every matching file under the root, plus cached paths whose
        file disappeared while nothing was watching. Returns the number queued."""
        queued = 0
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [
                d for d in dirnames
                if d not in IGNORED_DIRS
                and not d.startswith(".")
                and Path(dirpath, d).resolve() != self.summaries_dir
            ]
            for filename in filenames:
                full = os.path.join(dirpath, filename)
                if self.should_process(full):
                    self.add_pending(full)
                    queued += 1

        with self.summarizer.cache.transaction() as store:
            stale = [key for key in store if not (self.root / key).is_file()]
        for key in stale:
            self.add_pending(str(self.root / key))

        logger.info(f"Initial scan queued {queued} files and {len(stale)} stale cache entries under {self.root}")
        return queued + len(stale)

    # -------------------------------------------------------------------------
    # Batch processing
    # -------------------------------------------------------------------------

    def _take_batch(self) -> Optional[List[str]]:
        with self._lock:
            if self._busy or not self._pending:
                return None
            batch = sorted(self._pending)
            self._pending.clear()
            self._busy = True
            return batch

    def tick(self) -> Optional[BatchReport]:
        """Process the pending set once. Returns None if busy or nothing is pending."""
        batch = self._take_batch()
        if batch is None:
            return None

        started = time.time()
        report = BatchReport()
        try:
            files = [self._relative(p) for p in batch if self.should_process(p)]
            report.skipped = len(batch) - len(files)

            for rel in files:
                report.checked += 1
                try:
                    result = self.summarizer.summarize(rel)
                except Exception:
                    logger.exception(f"Error summarizing {rel}")
                    report.failed += 1
                    continue
                if result.changed:
                    report.updated += 1
                if result.removed:
                    report.removed += 1
                if result.error:
                    report.failed += 1
        finally:
            with self._lock:
                self._busy = False

        report.duration_ms = int((time.time() - started) * 1000)
        logger.info(report.summary_line())
        return report

    def _spawn_tick(self) -> None:
        if self.busy:
            return
        worker = threading.Thread(target=self.tick, name="token-shrinker-batch", daemon=True)
        worker.start()
        self._workers = [w for w in self._workers if w.is_alive()] + [worker]

    def _tick_loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self._spawn_tick()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, initial_scan: bool = True) -> None:
        """Start the observer and the tick timer."""
        if not self.root.is_dir():
            raise FileNotFoundError(f"Target path does not exist: {self.root}")

        if initial_scan:
            self.scan_existing()

        self.observer = Observer()
        self.observer.schedule(ChangeEventHandler(self), str(self.root), recursive=True)
        self.observer.start()

        self._stop.clear()
        self._ticker = threading.Thread(target=self._tick_loop, name="token-shrinker-ticker", daemon=True)
        self._ticker.start()

        logger.info(f"Watching files: {', '.join(self.include)}")
        logger.info(f"Ignoring patterns: {', '.join(self.ignore)}")
        logger.info(f"Watching {self.root} for code changes (tick: {self.interval_seconds}s)")

    def stop(self, wait_for_batch: bool = False) -> None:
        """Stop the timer and observer. A running batch is only awaited on request."""
        self._stop.set()
        if self._ticker:
            self._ticker.join(timeout=self.interval_seconds + 1)
            self._ticker = None
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None
        if wait_for_batch:
            for worker in self._workers:
                worker.join()
        self._workers = []
        logger.info("Stopped watcher")

    def run_forever(self, initial_scan: bool = True) -> None:
        """Watch until Ctrl+C or SIGTERM."""

        def _terminate(signum, frame):
            raise KeyboardInterrupt

        try:
            signal.signal(signal.SIGTERM, _terminate)
        except ValueError:
            # Not on the main thread; rely on KeyboardInterrupt only.
            pass

        self.start(initial_scan=initial_scan)
        logger.info("Watching for code changes (Ctrl+C to stop)...")
        try:
            while True:
                time.sleep(0.5)
        except KeyboardInterrupt:
            logger.info("Stopping watcher...")
        finally:
            self.stop()

