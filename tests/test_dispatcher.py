"""Tests for the compute dispatcher.

A scripted launcher stands in for the task process so that every message
ordering can be driven by hand; the inline and process launchers cover the
real task.
"""

import json

import pytest

import vectorcam.compute.dispatcher as dispatcher_mod
from vectorcam.compute.dispatcher import (
    ComputeDispatcher,
    DispatchListener,
    TaskState,
    progress_percent,
)
from vectorcam.compute.launcher import InlineTaskLauncher, ProcessTaskLauncher, TaskRequest
from vectorcam.core.errors import TaskDeserializationError
from vectorcam.core.geometry import GeometryGroup, LinePrimitive, translation
from vectorcam.core.interchange import decode_document, dumps
from vectorcam.core.operation import OperationKind, ToolpathParameters
from vectorcam.core.registry import ToolpathRegistry


# ---------------------------------------------------------------------------
# Scripted task doubles
# ---------------------------------------------------------------------------


class FakeHandle:
    def __init__(self, request: TaskRequest):
        self.request = request
        self.pending: list[dict] = []
        self.alive = True
        self.terminated = False

    def push(self, *messages: dict) -> None:
        self.pending.extend(messages)

    def drain(self) -> list[dict]:
        messages, self.pending = self.pending, []
        return messages

    def is_alive(self) -> bool:
        return self.alive and not self.terminated

    def terminate(self) -> None:
        self.terminated = True


class FakeLauncher:
    def __init__(self):
        self.handles: list[FakeHandle] = []

    def start(self, request: TaskRequest) -> FakeHandle:
        handle = FakeHandle(request)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]


class RecordingListener(DispatchListener):
    def __init__(self):
        self.events: list[tuple] = []

    def on_busy(self, entry_id, running):
        self.events.append(("busy", running))

    def on_progress(self, entry_id, percent):
        self.events.append(("progress", percent))

    def on_completed(self, entry_id):
        self.events.append(("completed",))

    def on_failed(self, entry_id, error):
        self.events.append(("failed", str(error)))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> ToolpathRegistry:
    return ToolpathRegistry()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def dispatcher(registry, launcher, listener) -> ComputeDispatcher:
    return ComputeDispatcher(registry, launcher, listener)


@pytest.fixture
def square() -> LinePrimitive:
    return LinePrimitive([(0, 0), (20, 0), (20, 20), (0, 20), (0, 0)])


@pytest.fixture
def entry_id(registry, square) -> str:
    return registry.create_from_selection([square])


def _result_doc(name: str = "result") -> str:
    inflated = GeometryGroup(
        name="inflated",
        children=[LinePrimitive([(0, 0), (5, 0)], matrix=translation(z=-3))],
    )
    root = GeometryGroup(name=name)
    root.nested["inflated"] = inflated
    return dumps(root)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestProgressPercent:
    def test_climbs_ten_per_pass(self):
        assert progress_percent(0) == 10
        assert progress_percent(4) == 50

    def test_parks_below_done(self):
        assert progress_percent(9) == 95
        assert progress_percent(100) == 95


class TestDispatch:
    def test_dispatch_starts_task(self, dispatcher, launcher, entry_id):
        generation = dispatcher.dispatch(entry_id)
        assert generation == 1
        assert dispatcher.state(entry_id) is TaskState.DISPATCHED
        assert dispatcher.is_busy(entry_id)
        assert dispatcher.is_any_busy()

        request = launcher.last.request
        assert request.entry_id == entry_id
        assert request.index == 0
        assert request.to_message()["data"]["performanceLimit"] is False

    def test_request_carries_geometry_and_parameters(
        self, dispatcher, launcher, registry, entry_id
    ):
        registry.update_parameters(entry_id, ToolpathParameters(operation=OperationKind.POCKET))
        dispatcher.dispatch(entry_id)

        doc = decode_document(launcher.last.request.document)
        assert doc.user_data["camOperation"] == "CNC: Pocket"
        assert len(doc.lines()) == 1

    def test_redispatch_cancels_previous(self, dispatcher, launcher, entry_id):
        dispatcher.dispatch(entry_id)
        first = launcher.last
        assert dispatcher.dispatch(entry_id) == 2
        assert first.terminated
        assert not launcher.last.terminated
        assert len(launcher.handles) == 2

    def test_unknown_entry(self, dispatcher):
        with pytest.raises(KeyError):
            dispatcher.dispatch("missing")

    def test_idle_record(self, dispatcher, entry_id):
        assert dispatcher.state(entry_id) is TaskState.IDLE
        assert not dispatcher.is_busy(entry_id)
        assert dispatcher.progress(entry_id) == 0


class TestMessages:
    def test_progress(self, dispatcher, launcher, listener, entry_id):
        dispatcher.dispatch(entry_id)
        launcher.last.push({"running": True}, {"progress": True, "pass": 0})
        dispatcher.poll()
        assert dispatcher.state(entry_id) is TaskState.PROGRESSING
        assert dispatcher.progress(entry_id) == 10

        launcher.last.push({"progress": True, "pass": 30})
        dispatcher.poll()
        assert dispatcher.progress(entry_id) == 95
        assert ("progress", 95) in listener.events

    def test_completion(self, dispatcher, launcher, listener, registry, entry_id):
        dispatcher.dispatch(entry_id)
        handle = launcher.last
        handle.push({"running": False}, {"toolpath": _result_doc()})
        assert dispatcher.poll() == 2

        entry = registry.get(entry_id)
        assert entry.computed_result.name == "result"
        assert entry.computed_result.inflated is not None
        assert dispatcher.state(entry_id) is TaskState.COMPLETED
        assert dispatcher.progress(entry_id) == 100
        assert not dispatcher.is_busy(entry_id)
        assert handle.terminated
        assert listener.events[-1] == ("completed",)

    def test_stale_generation_dropped(self, dispatcher, launcher, registry, entry_id):
        old_gen = dispatcher.dispatch(entry_id)
        dispatcher.dispatch(entry_id)

        applied = dispatcher.handle_message(entry_id, old_gen, {"toolpath": _result_doc()})
        assert applied is False
        assert registry.get(entry_id).computed_result is None
        assert dispatcher.state(entry_id) is TaskState.DISPATCHED

    def test_message_after_completion_dropped(self, dispatcher, launcher, registry, entry_id):
        gen = dispatcher.dispatch(entry_id)
        dispatcher.handle_message(entry_id, gen, {"toolpath": _result_doc("first")})
        assert not dispatcher.handle_message(entry_id, gen, {"toolpath": _result_doc("late")})
        assert registry.get(entry_id).computed_result.name == "first"

    def test_message_for_deleted_entry_dropped(self, dispatcher, launcher, registry, entry_id):
        gen = dispatcher.dispatch(entry_id)
        handle = launcher.last
        registry.delete(entry_id)
        assert handle.terminated
        assert not dispatcher.handle_message(entry_id, gen, {"toolpath": _result_doc()})

    def test_invalidation_cancels_in_flight_task(
        self, dispatcher, launcher, registry, entry_id
    ):
        gen = dispatcher.dispatch(entry_id)
        handle = launcher.last
        registry.update_parameters(entry_id, ToolpathParameters(depth=3.0))

        assert handle.terminated
        assert dispatcher.state(entry_id) is TaskState.CANCELED
        assert not dispatcher.handle_message(entry_id, gen, {"toolpath": _result_doc()})
        assert registry.get(entry_id).computed_result is None


class TestFailures:
    def test_bad_result_keeps_previous(self, dispatcher, launcher, listener, registry, entry_id):
        dispatcher.dispatch(entry_id)
        launcher.last.push({"toolpath": _result_doc("good")})
        dispatcher.poll()

        dispatcher.dispatch(entry_id)
        launcher.last.push({"toolpath": "{not json"})
        dispatcher.poll()

        assert dispatcher.state(entry_id) is TaskState.FAILED
        record = dispatcher.record(entry_id)
        assert isinstance(record.error, TaskDeserializationError)
        assert "Preview failed" in str(record.error)
        assert registry.get(entry_id).computed_result.name == "good"
        assert listener.events[-1][0] == "failed"

    def test_task_error_message(self, dispatcher, launcher, registry, entry_id):
        dispatcher.dispatch(entry_id)
        launcher.last.push({"running": False}, {"error": "ValueError: boom"})
        dispatcher.poll()
        assert dispatcher.state(entry_id) is TaskState.FAILED
        assert "boom" in str(dispatcher.record(entry_id).error)
        assert not dispatcher.is_busy(entry_id)

    def test_task_exits_without_result(self, dispatcher, launcher, entry_id):
        dispatcher.dispatch(entry_id)
        launcher.last.alive = False
        dispatcher.poll()
        assert dispatcher.state(entry_id) is TaskState.FAILED
        assert "without a result" in str(dispatcher.record(entry_id).error)

    def test_result_drained_after_exit_still_applied(self, dispatcher, launcher, registry, entry_id):
        dispatcher.dispatch(entry_id)
        launcher.last.push({"toolpath": _result_doc()})
        launcher.last.alive = False
        dispatcher.poll()
        assert dispatcher.state(entry_id) is TaskState.COMPLETED

    @pytest.mark.parametrize("member", ["line_user_data", "metadata"])
    def test_non_object_member_fails_entry(
        self, dispatcher, launcher, registry, entry_id, member
    ):
        dispatcher.dispatch(entry_id)
        launcher.last.push({"toolpath": _result_doc("good")})
        dispatcher.poll()

        doc = json.loads(_result_doc("bad"))
        if member == "metadata":
            doc["metadata"] = [1, 2]
        else:
            doc["object"]["userData"]["inflated"]["object"]["children"][0]["userData"] = [1]

        dispatcher.dispatch(entry_id)
        launcher.last.push({"toolpath": json.dumps(doc)})
        dispatcher.poll()

        assert dispatcher.state(entry_id) is TaskState.FAILED
        assert "Preview failed" in str(dispatcher.record(entry_id).error)
        assert not dispatcher.is_any_busy()
        assert registry.get(entry_id).computed_result.name == "good"

    def test_unexpected_decode_error_fails_entry(
        self, dispatcher, launcher, entry_id, monkeypatch
    ):
        def explode(payload):
            raise RuntimeError("decoder crashed")

        monkeypatch.setattr(dispatcher_mod, "decode_document", explode)
        dispatcher.dispatch(entry_id)
        launcher.last.push({"toolpath": _result_doc()})
        dispatcher.poll()

        assert dispatcher.state(entry_id) is TaskState.FAILED
        assert "decoder crashed" in str(dispatcher.record(entry_id).error)
        assert launcher.last.terminated
        assert not dispatcher.is_any_busy()

    def test_redispatch_clears_error(self, dispatcher, launcher, entry_id):
        dispatcher.dispatch(entry_id)
        launcher.last.push({"error": "boom"})
        dispatcher.poll()
        dispatcher.dispatch(entry_id)
        assert dispatcher.record(entry_id).error is None


class TestCancel:
    def test_cancel(self, dispatcher, launcher, listener, entry_id):
        dispatcher.dispatch(entry_id)
        assert dispatcher.cancel(entry_id)
        assert launcher.last.terminated
        assert dispatcher.state(entry_id) is TaskState.CANCELED
        assert ("busy", False) in listener.events

    def test_cancel_without_task(self, dispatcher, entry_id):
        assert not dispatcher.cancel(entry_id)

    def test_cancel_all(self, dispatcher, registry, square, entry_id):
        other = registry.create_from_selection([square.clone()])
        dispatcher.dispatch(entry_id)
        dispatcher.dispatch(other)
        assert dispatcher.cancel_all() == 2
        assert not dispatcher.is_any_busy()

    def test_delete_forgets_record(self, dispatcher, launcher, registry, square, entry_id):
        other = registry.create_from_selection([square.clone()])
        dispatcher.dispatch(entry_id)
        dispatcher.dispatch(other)
        gen = dispatcher.record(entry_id).generation

        registry.delete(entry_id)
        assert launcher.handles[0].terminated
        assert dispatcher.tracked_ids() == [other]
        assert not dispatcher.handle_message(entry_id, gen, {"toolpath": _result_doc()})

        registry.clear_all()
        assert dispatcher.tracked_ids() == []
        assert not dispatcher.is_any_busy()

    def test_invalidation_keeps_record(self, dispatcher, registry, entry_id):
        dispatcher.dispatch(entry_id)
        registry.set_tab_locations(entry_id, [])
        assert dispatcher.tracked_ids() == [entry_id]
        assert dispatcher.state(entry_id) is TaskState.CANCELED

    def test_wait_idle_timeout_cancels(self, dispatcher, launcher, entry_id):
        dispatcher.dispatch(entry_id)
        with pytest.raises(TimeoutError):
            dispatcher.wait_idle(timeout=0.05, interval=0.01)
        assert launcher.last.terminated
        assert dispatcher.state(entry_id) is TaskState.CANCELED


class TestInlineLauncher:
    def test_end_to_end(self, registry, square):
        dispatcher = ComputeDispatcher(registry, InlineTaskLauncher())
        entry_id = registry.create_from_selection(
            [square], ToolpathParameters(tool_diameter=2.0, depth=6.0, pass_depth=3.0)
        )
        dispatcher.dispatch(entry_id)
        dispatcher.wait_idle(timeout=5.0)

        assert dispatcher.state(entry_id) is TaskState.COMPLETED
        result = registry.get(entry_id).computed_result
        inflated = result.inflated
        z_values = sorted({round(line.matrix[2, 3], 6) for line in inflated.lines()})
        assert z_values == [-6.0, -3.0]
        assert inflated.pretty is not None
        assert result.user_data["camOperation"] == "CNC: Vector (path outside)"

    def test_task_failure_reported(self, registry, square):
        dispatcher = ComputeDispatcher(registry, InlineTaskLauncher())
        entry_id = registry.create_from_selection(
            [square], ToolpathParameters(pass_depth=0.0)
        )
        dispatcher.dispatch(entry_id)
        dispatcher.wait_idle(timeout=5.0)
        assert dispatcher.state(entry_id) is TaskState.FAILED
        assert "step_down" in str(dispatcher.record(entry_id).error)


class TestProcessLauncher:
    def test_redispatch_in_separate_process(self, registry, square):
        dispatcher = ComputeDispatcher(registry, ProcessTaskLauncher())
        entry_id = registry.create_from_selection(
            [square], ToolpathParameters(tool_diameter=2.0, depth=3.0, pass_depth=3.0)
        )
        first = dispatcher.dispatch(entry_id)
        second = dispatcher.dispatch(entry_id)
        assert second == first + 1

        dispatcher.wait_idle(timeout=60.0)

        assert dispatcher.state(entry_id) is TaskState.COMPLETED
        assert dispatcher.record(entry_id).error is None
        result = registry.get(entry_id).computed_result
        assert result.inflated is not None
        assert result.inflated.lines()
