"""
Serial job queue.

Jobs run one at a time, in submission order, on a background worker thread
that is started when work arrives and exits when the backlog is empty.
The backlog lives in memory only.
"""

import threading
from collections import deque
from typing import Callable, Deque, Generic, Optional, TypeVar
from rich.console import Console

console = Console()

T = TypeVar("T")


class JobQueue(Generic[T]):
    """FIFO queue that never runs two jobs concurrently."""

    def __init__(self, runner: Callable[[T], object], name: str = "nd3-queue"):
        self._runner = runner
        self._name = name
        self._backlog: Deque[T] = deque()
        self._busy = False
        self._cond = threading.Condition()

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._busy

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._backlog)

    def submit(self, job: T) -> None:
        """Append a job to the backlog and start processing if idle."""
        with self._cond:
            self._backlog.append(job)
            if self._busy:
                return
            self._busy = True

        worker = threading.Thread(target=self._run_next, name=self._name, daemon=True)
        worker.start()

    def _next_job(self) -> Optional[T]:
        with self._cond:
            if not self._backlog:
                self._busy = False
                self._cond.notify_all()
                return None
            return self._backlog.popleft()

    def _run_next(self) -> None:
        while True:
            job = self._next_job()
            if job is None:
                return
            try:
                self._runner(job)
            except Exception as e:
                console.print(f"[red]Queue job error: {e}[/red]")

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until the backlog is empty and no job is running."""
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._busy and not self._backlog, timeout=timeout
            )
