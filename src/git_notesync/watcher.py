import logging
import os
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from .constants import APP_NAME, IGNORED_SUFFIXES
from .models import ChangeEvent, ChangeKind

logger = logging.getLogger(APP_NAME)

EventSink = Callable[[ChangeEvent], None]


def is_note_file(path: Path, roots: Iterable[Path] = ()) -> bool:
    """Filters out editor scratch files and anything inside a hidden directory.

    Hidden components are only checked below the watched root the file lives
    in, so a root such as `~/.notes` still works.
    """
    parts = path.parts
    for root in roots:
        try:
            parts = path.relative_to(root).parts
            break
        except ValueError:
            continue
    if any(part.startswith(".") for part in parts):
        return False
    return not path.name.endswith(IGNORED_SUFFIXES)


def enumerate_directory(root: Path, sink: EventSink) -> int:
    """Emits a MODIFIED event for every note file below `root`.

    Used at startup to publish notes that changed while the daemon was down.
    Hidden directories (e.g. `.git`, `.obsidian`) are skipped.

    Args:
        root (Path): The directory to sweep.
        sink (EventSink): Receives one event per file.

    Returns:
        int: The number of events emitted.
    """
    count = 0
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for name in sorted(filenames):
            path = Path(dirpath) / name
            if not is_note_file(path, [root]):
                continue
            sink(ChangeEvent(ChangeKind.MODIFIED, path, time.time()))
            count += 1
    logger.info(f"Enumerated {count} notes in {root}")
    return count


class NoteEventHandler(FileSystemEventHandler):
    """Translates watchdog events into `ChangeEvent`s."""

    def __init__(self, sink: EventSink, roots: Iterable[Path] = ()):
        self.sink = sink
        self.roots = [Path(r) for r in roots]

    def _emit(self, kind: ChangeKind, src: str | bytes) -> None:
        path = Path(os.fsdecode(src))
        if not is_note_file(path, self.roots):
            return
        self.sink(ChangeEvent(kind, path, time.time()))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(ChangeKind.CREATED, event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(ChangeKind.MODIFIED, event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(ChangeKind.DELETED, event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors that save via rename land the new content at the destination.
        if not event.is_directory and isinstance(event, FileSystemMovedEvent):
            self._emit(ChangeKind.MODIFIED, event.dest_path)


class NoteWatcher:
    """Watches note directories and forwards change events.

    Attributes:
        dirs (list[Path]): The watched directories.
    """

    def __init__(self, dirs: Iterable[Path], sink: EventSink):
        self.dirs = [Path(d) for d in dirs]
        self._handler = NoteEventHandler(sink, self.dirs)
        self._observer: Observer | None = None

    def start(self) -> None:
        """Starts the observer thread for all existing directories."""
        observer = Observer()
        for d in self.dirs:
            if not d.is_dir():
                logger.warning(f"Watch directory missing: {d}")
                continue
            observer.schedule(self._handler, str(d), recursive=True)
            logger.info(f"Watching {d}")
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        """Stops the observer and waits for its thread to exit."""
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
