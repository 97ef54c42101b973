"""Task launchers: start one isolated computation per request.

A launcher returns a :class:`TaskHandle` that the dispatcher drains for
messages from the control thread.  ``ProcessTaskLauncher`` gives every task
its own process and memory; ``InlineTaskLauncher`` runs the same task
synchronously in-process, which keeps tests and small CLI runs free of
subprocesses.
"""

from __future__ import annotations

import logging
import multiprocessing
import queue as queue_mod
from dataclasses import dataclass
from typing import Protocol

from .worker import run_task, task_main

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskRequest:
    """Everything a task needs, plus the token identifying this dispatch."""

    entry_id: str
    generation: int
    document: str      # interchange document (JSON)
    index: int         # ordinal position of the entry in the registry
    performance_limit: bool = False

    def to_message(self) -> dict:
        return {
            "data": {
                "toolpath": self.document,
                "index": self.index,
                "performanceLimit": self.performance_limit,
            }
        }


class TaskHandle(Protocol):
    def drain(self) -> list[dict]:
        """Return (and forget) every message received so far."""

    def is_alive(self) -> bool:
        ...

    def terminate(self) -> None:
        ...


class TaskLauncher(Protocol):
    def start(self, request: TaskRequest) -> TaskHandle:
        ...


# ---------------------------------------------------------------------------
# Separate process
# ---------------------------------------------------------------------------


class ProcessTaskHandle:
    def __init__(self, process, queue):
        self._process = process
        self._queue = queue

    def drain(self) -> list[dict]:
        messages = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue_mod.Empty:
                return messages

    def is_alive(self) -> bool:
        return self._process.is_alive()

    def terminate(self) -> None:
        if self._process.is_alive():
            self._process.terminate()
        self._process.join(timeout=1.0)
        self._queue.close()


class ProcessTaskLauncher:
    """Runs every task in its own process (``spawn`` start method)."""

    def __init__(self, start_method: str = "spawn"):
        self._ctx = multiprocessing.get_context(start_method)

    def start(self, request: TaskRequest) -> ProcessTaskHandle:
        q = self._ctx.Queue()
        proc = self._ctx.Process(
            target=task_main,
            args=(request.to_message(), q),
            name=f"vectorcam-task-{request.index}",
            daemon=True,
        )
        proc.start()
        logger.debug("Started task pid=%s for %s", proc.pid, request.entry_id)
        return ProcessTaskHandle(proc, q)


# ---------------------------------------------------------------------------
# In-process
# ---------------------------------------------------------------------------


class InlineTaskHandle:
    def __init__(self, messages: list[dict]):
        self._messages = messages

    def drain(self) -> list[dict]:
        messages, self._messages = self._messages, []
        return messages

    def is_alive(self) -> bool:
        return False

    def terminate(self) -> None:
        self._messages = []


class InlineTaskLauncher:
    """Runs the task to completion inside :meth:`start`.

    Messages are buffered and only reach the dispatcher on the next
    ``poll()``, the same as with a real process.
    """

    def start(self, request: TaskRequest) -> InlineTaskHandle:
        messages: list[dict] = []
        run_task(request.to_message(), messages.append)
        return InlineTaskHandle(messages)
