"""Compute dispatcher: one cancelable computation task per toolpath.

Per entry the dispatcher walks the state machine::

    IDLE -> DISPATCHED -> (PROGRESSING)* -> COMPLETED | FAILED | CANCELED

Every dispatch bumps the entry's generation token.  Messages are tagged
with the generation they were produced under; anything from an older
generation, or arriving after the task reached a terminal state, is a
``StaleTaskMessage`` and is dropped without touching the entry.

The dispatcher never blocks.  Whoever owns the event loop calls
:meth:`ComputeDispatcher.poll` (a GUI timer, or :meth:`wait_idle` in the
CLI); all state changes happen on that thread.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..core.errors import (
    InterchangeError,
    StaleTaskMessage,
    TaskDeserializationError,
    UnknownToolpathError,
)
from ..core.geometry import GeometryGroup
from ..core.interchange import decode_document, dumps
from ..core.registry import ToolpathEntry, ToolpathRegistry
from .launcher import ProcessTaskLauncher, TaskHandle, TaskLauncher, TaskRequest

logger = logging.getLogger(__name__)

MAX_DISPLAY_PERCENT = 95


def progress_percent(pass_index: int) -> int:
    """Display percentage for a pass counter.

    The total number of passes is not known up front, so this climbs 10%
    per pass and parks at 95% until the result arrives.
    """
    return min((pass_index + 1) * 10, MAX_DISPLAY_PERCENT)


class TaskState(Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    PROGRESSING = "progressing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass
class TaskRecord:
    """Dispatcher-side bookkeeping for one entry."""

    state: TaskState = TaskState.IDLE
    generation: int = 0
    handle: Optional[TaskHandle] = None
    running: bool = False
    last_pass: int = -1
    percent: int = 0
    error: Optional[TaskDeserializationError] = None

    @property
    def in_flight(self) -> bool:
        return self.handle is not None


class DispatchListener:
    """Receives user-facing notices.  Override what you need."""

    def on_busy(self, entry_id: str, running: bool) -> None:
        pass

    def on_progress(self, entry_id: str, percent: int) -> None:
        pass

    def on_completed(self, entry_id: str) -> None:
        pass

    def on_failed(self, entry_id: str, error: TaskDeserializationError) -> None:
        pass


def build_request_document(entry: ToolpathEntry) -> str:
    """Serialize the entry's source geometry and full parameter record."""
    group = GeometryGroup(
        children=list(entry.source_geometry.children),
        matrix=entry.source_geometry.matrix,
        id=entry.source_geometry.id,
        name=entry.name,
        user_data=entry.parameters.to_user_data(),
    )
    return dumps(group)


class ComputeDispatcher:
    """Owns the task handle of every toolpath entry."""

    def __init__(
        self,
        registry: ToolpathRegistry,
        launcher: Optional[TaskLauncher] = None,
        listener: Optional[DispatchListener] = None,
    ):
        self._registry = registry
        self._launcher = launcher or ProcessTaskLauncher()
        self._listener = listener or DispatchListener()
        self._records: dict[str, TaskRecord] = {}
        registry.task_canceller = self.cancel

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def tracked_ids(self) -> list[str]:
        """Entries the dispatcher holds a record for."""
        return list(self._records)

    def record(self, entry_id: str) -> TaskRecord:
        return self._records.get(entry_id) or TaskRecord()

    def state(self, entry_id: str) -> TaskState:
        return self.record(entry_id).state

    def progress(self, entry_id: str) -> int:
        return self.record(entry_id).percent

    def is_busy(self, entry_id: str) -> bool:
        return self.record(entry_id).in_flight

    def is_any_busy(self) -> bool:
        return any(r.in_flight for r in self._records.values())

    # ------------------------------------------------------------------
    # Dispatch / cancel
    # ------------------------------------------------------------------

    def dispatch(self, entry_id: str) -> int:
        """Start computing *entry_id*; returns the new generation token.

        A task already in flight for the entry is canceled first.
        """
        entry = self._registry.get(entry_id)
        self.cancel(entry_id)

        rec = self._records.setdefault(entry_id, TaskRecord())
        rec.generation += 1
        request = TaskRequest(
            entry_id=entry_id,
            generation=rec.generation,
            document=build_request_document(entry),
            index=self._registry.index_of(entry_id),
        )
        rec.handle = self._launcher.start(request)
        rec.state = TaskState.DISPATCHED
        rec.running = True
        rec.last_pass = -1
        rec.percent = 0
        rec.error = None

        logger.info("Computing %s (generation %d)", entry.name, rec.generation)
        self._listener.on_busy(entry_id, True)
        return rec.generation

    def cancel(self, entry_id: str) -> bool:
        """Terminate the in-flight task for *entry_id*, if any.

        No graceful drain: partial work is discarded and anything the task
        sends afterwards is stale.  The record of an entry the registry no
        longer holds is forgotten.
        """
        rec = self._records.get(entry_id)
        canceled = rec is not None and rec.handle is not None
        if canceled:
            rec.handle.terminate()
            self._settle(entry_id, rec, TaskState.CANCELED)
            logger.info("Canceled task for %s", entry_id)
        if entry_id not in self._registry:
            self._records.pop(entry_id, None)
        return canceled

    def cancel_all(self) -> int:
        return sum(1 for entry_id in list(self._records) if self.cancel(entry_id))

    # ------------------------------------------------------------------
    # Message ingestion
    # ------------------------------------------------------------------

    def poll(self) -> int:
        """Drain and apply pending messages from every live task.

        Returns the number of messages applied.  A task whose process has
        gone away without a terminal message is marked failed.
        """
        applied = 0
        for entry_id, rec in list(self._records.items()):
            if rec.handle is None:
                continue
            generation = rec.generation
            handle = rec.handle
            for message in handle.drain():
                if self.handle_message(entry_id, generation, message):
                    applied += 1

            if rec.handle is handle and not handle.is_alive():
                for message in handle.drain():
                    if self.handle_message(entry_id, generation, message):
                        applied += 1
                if rec.handle is handle:
                    self._fail(
                        entry_id, rec,
                        TaskDeserializationError("Computation task exited without a result"),
                    )
        return applied

    def handle_message(self, entry_id: str, generation: int, message: dict) -> bool:
        """Apply one task message.  Returns False if it was stale."""
        try:
            rec = self._current(entry_id, generation)
        except StaleTaskMessage as exc:
            logger.debug("Dropped stale message: %s", exc)
            return False

        if "running" in message:
            rec.running = bool(message["running"])
            self._listener.on_busy(entry_id, rec.running)

        if message.get("progress"):
            pass_index = int(message.get("pass", 0))
            rec.last_pass = max(rec.last_pass, pass_index)
            rec.percent = progress_percent(rec.last_pass)
            rec.state = TaskState.PROGRESSING
            self._listener.on_progress(entry_id, rec.percent)

        if "error" in message:
            self._fail(entry_id, rec, TaskDeserializationError(str(message["error"])))
        elif "toolpath" in message:
            self._complete(entry_id, rec, message["toolpath"])
        return True

    def _current(self, entry_id: str, generation: int) -> TaskRecord:
        rec = self._records.get(entry_id)
        if rec is None or entry_id not in self._registry:
            raise StaleTaskMessage(f"{entry_id}: no such toolpath")
        if generation != rec.generation:
            raise StaleTaskMessage(
                f"{entry_id}: generation {generation} superseded by {rec.generation}"
            )
        if rec.handle is None:
            raise StaleTaskMessage(f"{entry_id}: task already {rec.state.value}")
        return rec

    def _complete(self, entry_id: str, rec: TaskRecord, payload) -> None:
        try:
            result = decode_document(payload)
        except Exception as exc:
            if not isinstance(exc, InterchangeError):
                logger.exception("Unexpected error decoding result for %s", entry_id)
            self._fail(entry_id, rec, TaskDeserializationError(f"Preview failed: {exc}"))
            return

        rec.handle.terminate()
        self._settle(entry_id, rec, TaskState.COMPLETED)
        try:
            self._registry.set_computed_result(entry_id, result)
        except UnknownToolpathError:
            return
        rec.percent = 100
        logger.info("Preview ready for %s", entry_id)
        self._listener.on_completed(entry_id)

    def _fail(self, entry_id: str, rec: TaskRecord, error: TaskDeserializationError) -> None:
        if rec.handle is not None:
            rec.handle.terminate()
        self._settle(entry_id, rec, TaskState.FAILED)
        rec.error = error
        logger.warning("Computation failed for %s: %s", entry_id, error)
        self._listener.on_failed(entry_id, error)

    def _settle(self, entry_id: str, rec: TaskRecord, state: TaskState) -> None:
        was_running = rec.running
        rec.handle = None
        rec.running = False
        rec.state = state
        if was_running:
            self._listener.on_busy(entry_id, False)

    # ------------------------------------------------------------------
    # Blocking helper (CLI / scripts)
    # ------------------------------------------------------------------

    def wait_idle(self, timeout: Optional[float] = None, interval: float = 0.05) -> None:
        """Poll until no task is in flight.

        Raises TimeoutError (after canceling every task) if *timeout*
        seconds pass first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.poll()
            if not self.is_any_busy():
                return
            if deadline is not None and time.monotonic() >= deadline:
                self.cancel_all()
                raise TimeoutError(f"Computation did not finish within {timeout}s")
            time.sleep(interval)
