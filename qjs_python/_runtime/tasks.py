"""
Single-consumer task queue for the thread that owns a context.

Worker threads never touch engine state. They post a callable here and the
owning thread runs it when it drains the queue.
"""

import asyncio
import queue
import threading
from typing import Callable, Optional

Task = Callable[[], None]


class TaskQueue:
    """
    Thread-safe FIFO of tasks, drained only by its owning thread.

    `expect()` / `done()` count work that has been handed to another thread
    and will post a completion later, so `Context.loop()` knows when to stop.
    """

    def __init__(self, owner_thread: Optional[int] = None):
        self._queue: "queue.SimpleQueue[Task]" = queue.SimpleQueue()
        self._owner = owner_thread if owner_thread is not None else threading.get_ident()
        self._lock = threading.Lock()
        self._outstanding = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def owner_thread(self) -> int:
        return self._owner

    @property
    def outstanding(self) -> int:
        with self._lock:
            return self._outstanding

    def is_owner(self) -> bool:
        return threading.get_ident() == self._owner

    def check_owner(self) -> None:
        if not self.is_owner():
            raise RuntimeError("task queue can only be drained by its owning thread")

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Drain automatically on `loop`, which must run on the owning thread."""
        self._loop = loop

    def post(self, task: Task) -> None:
        """Queue a task. Safe to call from any thread."""
        self._queue.put(task)
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.run_pending)

    def expect(self) -> None:
        """Record one piece of outstanding work."""
        with self._lock:
            self._outstanding += 1

    def done(self) -> None:
        with self._lock:
            if self._outstanding > 0:
                self._outstanding -= 1

    def empty(self) -> bool:
        return self._queue.empty()

    def run_pending(self) -> int:
        """Run every queued task. Returns the number run."""
        self.check_owner()
        count = 0
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                return count
            task()
            count += 1

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until a task arrives, then drain. Returns False on timeout."""
        self.check_owner()
        try:
            task = self._queue.get(timeout=timeout)
        except queue.Empty:
            return False
        task()
        self.run_pending()
        return True
