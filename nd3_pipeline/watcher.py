"""
Directory Watcher

Watches the incoming directory for capture archives and hands each one on
once it has finished being written (its size stops changing between polls).
"""

import os
import threading
from pathlib import Path
from typing import Callable, Optional, Set
from rich.console import Console
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

console = Console()


class FatalIngestError(Exception):
    """The watcher cannot start; no new work will be ingested."""
    pass


class FileStabilityChecker:
    """
    Polls file sizes until a file stops growing.

    A file is stable once two consecutive polls, poll_interval apart, report
    the same size. Each file is checked on its own thread.
    """

    def __init__(self, poll_interval: float = 1.0):
        self.poll_interval = poll_interval
        self._active: Set[Path] = set()
        self._lock = threading.Lock()
        self._stopping = threading.Event()

    @property
    def active(self) -> Set[Path]:
        with self._lock:
            return set(self._active)

    def _size(self, path: Path) -> Optional[int]:
        try:
            stat = os.stat(path)
        except OSError:
            return None
        if not path.is_file():
            return None
        return stat.st_size

    def wait_until_stable(self, path: Path) -> bool:
        """
        Block until path stops growing.

        Returns:
            True once stable, False if the file vanished or the checker stopped
        """
        previous = self._size(path)
        if previous is None:
            return False

        while not self._stopping.wait(self.poll_interval):
            current = self._size(path)
            if current is None:
                return False
            if current == previous:
                return True
            previous = current

        return False

    def watch(self, path: Path, on_stable: Callable[[Path], None]) -> bool:
        """
        Start a background stability check for path.

        Returns:
            False if path is already being checked
        """
        path = Path(path)
        with self._lock:
            if path in self._active:
                return False
            self._active.add(path)

        thread = threading.Thread(
            target=self._check,
            args=(path, on_stable),
            name=f"stability-{path.name}",
            daemon=True,
        )
        thread.start()
        return True

    def _check(self, path: Path, on_stable: Callable[[Path], None]) -> None:
        try:
            if self.wait_until_stable(path):
                console.print(f"[green]New file detected: {path}[/green]")
                on_stable(path)
        except Exception as e:
            console.print(f"[red]Error handing off {path}: {e}[/red]")
        finally:
            with self._lock:
                self._active.discard(path)

    def stop(self) -> None:
        self._stopping.set()


class ArchiveEventHandler(FileSystemEventHandler):
    """Forwards created and moved-in files to the watcher."""

    def __init__(self, watcher: "DirectoryWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.consider(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.consider(Path(os.fsdecode(event.dest_path)))


class DirectoryWatcher:
    """Submits every stable archive that appears in incoming_dir to on_stable."""

    def __init__(
        self,
        incoming_dir: Path,
        on_stable: Callable[[Path], None],
        archive_suffix: str = ".tar.gz",
        poll_interval: float = 1.0,
    ):
        self.incoming_dir = Path(incoming_dir)
        self.on_stable = on_stable
        self.archive_suffix = archive_suffix
        self.checker = FileStabilityChecker(poll_interval)
        self._observer = None

    def is_archive(self, path: Path) -> bool:
        return Path(path).name.endswith(self.archive_suffix)

    def consider(self, path: Path) -> bool:
        """
        Begin a stability check for path if it names an archive.

        Returns:
            True if a new check was started
        """
        path = Path(path)
        if not self.is_archive(path):
            console.print(f"[dim]Detected file {path}, but it doesn't match {self.archive_suffix}[/dim]")
            return False
        return self.checker.watch(path, self.on_stable)

    def scan_existing(self) -> int:
        """Feed archives already present in the incoming directory through the stability check."""
        started = 0
        for path in sorted(self.incoming_dir.iterdir()):
            if path.is_file() and self.is_archive(path) and self.consider(path):
                started += 1
        return started

    def start(self) -> None:
        if not self.incoming_dir.is_dir():
            raise FatalIngestError(f"Directory {self.incoming_dir} does not exist.")

        self._observer = Observer()
        self._observer.schedule(ArchiveEventHandler(self), str(self.incoming_dir), recursive=False)
        self._observer.start()
        console.print(
            f"[blue]Watching {self.incoming_dir} for {self.archive_suffix} files...[/blue]"
        )

    def stop(self) -> None:
        self.checker.stop()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def __enter__(self) -> "DirectoryWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
