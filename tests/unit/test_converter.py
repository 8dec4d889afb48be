"""Tests for TestEventsConverter.

Covers the per-event emission rules, virtual test promotion, group
completion, malformed input handling, and the raw/bootstrap fallbacks.
"""

from __future__ import annotations

import pytest

from test_event_bridge.converter import TestEventsConverter
from test_event_bridge.entities import Test
from test_event_bridge.exceptions import UnknownResult
from test_event_bridge.sinks import CollectingSink


def _suite(suite_id: int = 0, path: str | None = "test/foo_test.dart") -> dict:
    suite: dict = {"id": suite_id, "platform": "vm"}
    if path is not None:
        suite["path"] = path
    return {"type": "suite", "suite": suite, "time": 0}


def _group(group_id: int, name: str | None, parent: int | None, count: int | None = None, suite_id: int = 0) -> dict:
    group: dict = {"id": group_id, "name": name, "parentID": parent, "suiteID": suite_id}
    if count is not None:
        group["testCount"] = count
    return {"type": "group", "group": group, "time": 0}


def _test_start(test_id: int, name: str, group_ids: list[int], time: int = 0, **extra) -> dict:
    test = {"id": test_id, "name": name, "groupIDs": group_ids, "suiteID": 0, **extra}
    return {"type": "testStart", "test": test, "time": time}


def _test_done(test_id: int, time: int, result: str = "success") -> dict:
    return {"type": "testDone", "testID": test_id, "result": result, "time": time}


def _error(test_id: int, error: str, is_failure: bool = True, stack_trace: str = "") -> dict:
    return {
        "type": "error",
        "testID": test_id,
        "error": error,
        "stackTrace": stack_trace,
        "isFailure": is_failure,
        "time": 0,
    }


def _names(sink: CollectingSink) -> list[str]:
    return [m.name for m in sink.messages]


class TestTestStart:
    """Tests for testStart/testDone handling."""

    def test_root_test_started_and_finished(self, feed, sink: CollectingSink) -> None:
        """A parentless test reports nodeId and the root parent id."""
        feed({"type": "testStart", "test": {"id": 1, "name": "foo", "groupIDs": []}})

        assert len(sink.messages) == 1
        started = sink.messages[0]
        assert started.name == "testStarted"
        assert started.get("name") == "foo"
        assert started.get("nodeId") == "1"
        assert started.get("parentNodeId") == "0"

        feed({"type": "testDone", "testID": 1, "result": "success", "time": 100})

        assert len(sink.messages) == 2
        finished = sink.messages[1]
        assert finished.name == "testFinished"
        assert finished.get("duration") == "100"
        assert finished.get("nodeId") == "1"

    def test_duration_uses_start_time(self, feed, sink: CollectingSink) -> None:
        """Duration is done time minus start time of the same test."""
        feed(_test_start(3, "timed", [], time=250), _test_done(3, 400))
        assert sink.named("testFinished")[0].get("duration") == "150"

    def test_skipped_test_reports_ignored(self, feed, sink: CollectingSink) -> None:
        """Skip metadata produces a testIgnored message with the reason."""
        feed(_test_start(1, "later", [], metadata={"skip": True, "skipReason": "not ready"}))

        assert _names(sink) == ["testStarted", "testIgnored"]
        assert sink.messages[1].get("message") == "not ready"

    def test_skipped_test_without_reason(self, feed, sink: CollectingSink) -> None:
        """A skip without reason has no message attribute."""
        feed(_test_start(1, "later", [], metadata={"skip": True}))
        assert sink.messages[1].get("message") is None

    def test_unknown_result_aborts_feed(self, feed, converter: TestEventsConverter) -> None:
        """An unknown result raises out of feed."""
        feed(_test_start(1, "foo", []))
        with pytest.raises(UnknownResult):
            converter.feed('{"type": "testDone", "testID": 1, "result": "maybe", "time": 5}')

    def test_missing_result_is_unknown(self, feed, converter: TestEventsConverter) -> None:
        """A testDone without result is also an unknown result."""
        feed(_test_start(1, "foo", []))
        with pytest.raises(UnknownResult, match="no result"):
            converter.feed('{"type": "testDone", "testID": 1, "time": 5}')

    def test_done_for_hidden_test_is_noop(self, feed, sink: CollectingSink) -> None:
        """testDone of a test that never became visible emits nothing."""
        results = feed(
            _test_start(1, "loading test/foo_test.dart", []),
            _test_done(1, 10, result="not-checked"),
        )
        assert results == [True, True]
        assert sink.messages == []

    def test_location_hint_unknown_without_location(self, feed, sink: CollectingSink) -> None:
        """With no url, suite, or loading location the hint is 'unknown'."""
        feed({"type": "testStart", "test": {"id": 1, "name": "foo", "groupIDs": []}})
        assert sink.messages[0].get("locationHint") == "unknown"


class TestVirtualTests:
    """Tests for loading/compiling and setUpAll/tearDownAll virtual tests."""

    def test_loading_test_hidden_when_passing(self, feed, sink: CollectingSink) -> None:
        """A passing loading test produces no messages."""
        feed(_test_start(1, "loading test/foo_test.dart", []), _test_done(1, 10))
        assert sink.messages == []

    def test_compiling_test_promoted_on_error(self, feed, sink: CollectingSink) -> None:
        """An error promotes a hidden test with exactly one started message."""
        feed(
            _test_start(1, "compiling test/foo_test.dart", []),
            _error(1, "Compilation failed", stack_trace=""),
            _error(1, "Another problem", stack_trace=""),
            _test_done(1, 20, result="error"),
        )

        assert _names(sink) == ["testStarted", "testFailed", "testStdErr", "testFinished"]
        assert sink.messages[0].get("name") == "compiling foo_test.dart"
        assert sink.messages[0].get("locationHint") is None

    def test_loading_location_used_as_fallback(self, feed, sink: CollectingSink) -> None:
        """Later entities without location fall back to the loading test's path."""
        feed(
            _test_start(1, "loading test/foo_test.dart", []),
            {"type": "testStart", "test": {"id": 2, "name": "foo", "groupIDs": []}},
        )
        assert sink.messages[0].get("locationHint") == 'dart_location://test/foo_test.dart,-1,-1,["foo"]'

    def test_set_up_all_hidden_before_tests_finish(self, feed, sink: CollectingSink) -> None:
        """setUpAll before any finished sibling is hidden, print included."""
        feed(
            _suite(),
            _group(1, None, None, count=1),
            _test_start(2, "(setUpAll)", [1]),
            {"type": "print", "testID": 2, "message": "setting up", "time": 1},
            _test_done(2, 5),
        )
        assert _names(sink) == ["testCount", "testSuiteStarted"]

    def test_set_up_all_promoted_on_error(self, feed, sink: CollectingSink) -> None:
        """A failing setUpAll becomes a visible test."""
        feed(
            _suite(),
            _group(1, None, None, count=1),
            _group(2, "db", 1, count=1),
            _test_start(3, "db (setUpAll)", [1, 2]),
            _error(3, "connection refused", is_failure=False),
        )

        failed = sink.named("testFailed")[0]
        assert sink.named("testStarted")[0].get("name") == "(setUpAll)"
        assert failed.get("error") == "true"
        assert failed.get("parentNodeId") == "2"

    def test_tear_down_all_hidden_after_tests_finish(self, feed, sink: CollectingSink) -> None:
        """tearDownAll after a finished sibling is hidden."""
        feed(
            _suite(),
            _group(1, None, None, count=2),
            _test_start(2, "works", [1]),
            _test_done(2, 5),
            _test_start(3, "(tearDownAll)", [1]),
        )
        assert sink.named("testStarted")[-1].get("name") == "works"

    def test_tear_down_all_visible_before_any_test_finished(self, feed, sink: CollectingSink) -> None:
        """tearDownAll is only hidden once the group has finished tests."""
        feed(_suite(), _group(1, None, None), _test_start(2, "(tearDownAll)", [1]))
        assert sink.named("testStarted")[0].get("name") == "(tearDownAll)"


class TestErrors:
    """Tests for error and print events."""

    def test_comparison_failure_split(self, feed, sink: CollectingSink) -> None:
        """Expected/actual are extracted and the headline shortened."""
        feed(
            _test_start(1, "equals", []),
            _error(1, "Expected: 1\n  Actual: 2\n ^\n Differ...\n", is_failure=True),
        )

        failed = sink.named("testFailed")[0]
        assert failed.get("expected") == "1"
        assert failed.get("actual") == "2"
        assert failed.get("message") == "Comparison failed\n"
        assert failed.get("error") is None

    def test_unmatched_comparison_keeps_message(self, feed, sink: CollectingSink) -> None:
        """Without the diff pattern the full message is kept."""
        feed(_test_start(1, "equals", []), _error(1, "Expected: 1 but was 2"))

        failed = sink.named("testFailed")[0]
        assert failed.get("expected") is None
        assert failed.get("message") == "Expected: 1 but was 2\n"

    def test_second_error_goes_to_stderr(self, feed, sink: CollectingSink) -> None:
        """Only the first error produces testFailed."""
        feed(_test_start(1, "flaky", []), _error(1, "first"), _error(1, "second"))

        assert _names(sink) == ["testStarted", "testFailed", "testStdErr"]
        assert sink.messages[2].get("out") == "second\n"

    def test_stack_trace_emitted_as_stderr(self, feed, sink: CollectingSink) -> None:
        """A non-blank stack trace follows the failure as stderr."""
        feed(_test_start(1, "boom", []), _error(1, "bad state", stack_trace="main.dart 3:1"))

        assert _names(sink) == ["testStarted", "testFailed", "testStdErr"]
        assert sink.messages[2].get("out") == "main.dart 3:1\n"

    def test_missing_stack_trace_uses_placeholder(self, feed, sink: CollectingSink) -> None:
        """A missing stack trace is reported with its placeholder text."""
        feed(_test_start(1, "boom", []), {"type": "error", "testID": 1, "isFailure": True})

        assert sink.named("testFailed")[0].get("message") == "<no error message>\n"
        assert sink.named("testStdErr")[0].get("out") == "<no stack trace>\n"

    def test_late_error_after_done_is_not_reopened(self, feed, sink: CollectingSink) -> None:
        """An error after testDone is reported but the test is not restarted."""
        feed(_test_start(1, "async", []), _test_done(1, 5), _error(1, "late"))
        assert _names(sink) == ["testStarted", "testFinished", "testFailed"]

    def test_print_starts_unreported_test(self, feed, sink: CollectingSink) -> None:
        """Print output on a hidden non-hook test makes it visible."""
        feed(
            _test_start(1, "loading test/foo_test.dart", []),
            {"type": "print", "testID": 1, "message": "warming up", "time": 1},
        )
        assert _names(sink) == ["testStarted", "testStdOut"]
        assert sink.messages[1].get("out") == "warming up\n"

    def test_print_default_message(self, feed, sink: CollectingSink) -> None:
        """A print without message uses the placeholder."""
        feed(_test_start(1, "talks", []), {"type": "print", "testID": 1})
        assert sink.named("testStdOut")[0].get("out") == "<no message>\n"


class TestGroups:
    """Tests for group events and completion."""

    def test_root_group_with_count_reports_test_count(self, feed, sink: CollectingSink) -> None:
        """A root group with a test count emits testCount first."""
        feed(_suite(), _group(1, None, None, count=3))

        assert _names(sink) == ["testCount", "testSuiteStarted"]
        assert sink.messages[0].get("count") == "3"
        assert sink.messages[0].get("nodeId") is None
        assert sink.messages[1].get("name") == "foo_test.dart"
        assert sink.messages[1].get("locationHint") == "dart_location://test/foo_test.dart,-1,-1,[]"

    def test_artificial_group_hidden(self, feed, sink: CollectingSink) -> None:
        """A root group without name or suite path gets no suite message."""
        feed(_suite(path=None), _group(1, None, None, count=1), _group(2, "inner", 1))

        assert _names(sink) == ["testCount", "testSuiteStarted"]
        inner = sink.messages[1]
        assert inner.get("name") == "inner"
        assert inner.get("parentNodeId") == "0"

    def test_group_finishes_when_all_tests_done(self, feed, sink: CollectingSink) -> None:
        """Group completion cascades to the parent in one step."""
        feed(
            _suite(),
            _group(1, None, None, count=1),
            _group(2, "math", 1, count=1),
            _test_start(3, "math adds", [1, 2]),
            _test_done(3, 4),
        )

        finished = sink.named("testSuiteFinished")
        assert [m.get("nodeId") for m in finished] == ["2", "1"]
        assert _names(sink)[-3:] == ["testFinished", "testSuiteFinished", "testSuiteFinished"]

    def test_group_finished_only_once(self, feed, sink: CollectingSink) -> None:
        """Extra completions never finish a group twice."""
        feed(
            _suite(),
            _group(1, None, None, count=1),
            _test_start(2, "one", [1]),
            _test_done(2, 1),
            _test_start(3, "two", [1]),
            _test_done(3, 2),
            {"type": "done", "time": 3},
        )
        assert len(sink.named("testSuiteFinished")) == 1

    def test_done_count_never_exceeds_declared(self, feed, converter: TestEventsConverter) -> None:
        """The done count is capped at the declared count."""
        feed(
            _suite(),
            _group(1, None, None, count=1),
            _test_start(2, "one", [1]),
            _test_done(2, 1),
            _test_start(3, "two", [1]),
            _test_done(3, 2),
        )
        group = converter.registry.group(1)
        assert group is not None
        assert group.done_count == 1

    def test_legacy_groups_finished_on_done(self, feed, sink: CollectingSink) -> None:
        """Groups without test count are finished by the run-done flush."""
        feed(
            _suite(),
            _group(1, None, None),
            _group(2, "legacy", 1),
            _test_start(3, "legacy works", [1, 2]),
            _test_done(3, 1),
        )
        assert sink.named("testSuiteFinished") == []

        feed({"type": "done", "time": 2})
        assert sorted(m.get("nodeId") for m in sink.named("testSuiteFinished")) == ["1", "2"]

    def test_suite_without_path_discarded(self, feed, converter: TestEventsConverter) -> None:
        """Suites without a path are not kept in the registry."""
        feed(_suite(0, path=None), _suite(1, path="test/a_test.dart"))
        assert converter.registry.suite(0) is None
        assert converter.registry.suite(1) is not None


class TestRunLifecycle:
    """Tests for start/done/allSuites events."""

    def test_start_then_done(self, feed, sink: CollectingSink, converter: TestEventsConverter) -> None:
        """start+done yields one run marker and leaves empty tables."""
        feed({"type": "start", "time": 0}, {"type": "done", "time": 1})

        assert _names(sink) == ["enteredTheMatrix"]
        assert converter.registry.is_empty

    def test_start_resets_state(self, feed, converter: TestEventsConverter) -> None:
        """A new run forgets the entities of the previous one."""
        feed(_suite(), _group(1, None, None), _test_start(2, "a", [1]))
        feed({"type": "start", "time": 0})

        assert converter.registry.is_empty
        assert converter.emitter.last_location is None

    def test_all_suites_count_recorded(self, feed, converter: TestEventsConverter) -> None:
        feed({"type": "allSuites", "count": 4, "time": 0})
        assert converter.suite_count == 4

    def test_unknown_event_type_is_noop(self, feed, sink: CollectingSink) -> None:
        """Unrecognized event types succeed without output."""
        assert feed({"type": "debug", "observatory": "http://x"}) == [True]
        assert sink.messages == []


class TestMalformedInput:
    """Tests for malformed events and non-JSON lines."""

    def test_unknown_test_reference_dropped(self, feed, sink: CollectingSink) -> None:
        """A reference to an unregistered test fails only that line."""
        assert feed(_test_done(42, 10)) == [False]
        assert sink.messages == []

    def test_missing_time_dropped_without_state_change(
        self, feed, sink: CollectingSink, converter: TestEventsConverter
    ) -> None:
        """A testDone without time leaves the test unfinished."""
        feed(_suite(), _group(1, None, None, count=1), _test_start(2, "a", [1]))
        assert feed({"type": "testDone", "testID": 2, "result": "success"}) == [False]

        group = converter.registry.group(1)
        assert group is not None
        assert group.done_count == 0
        assert sink.named("testFinished") == []

    def test_missing_type_dropped(self, feed) -> None:
        assert feed({"testID": 1}) == [False]

    def test_error_without_is_failure_dropped(self, feed, sink: CollectingSink) -> None:
        """isFailure is required on error events."""
        feed(_test_start(1, "a", []))
        assert feed({"type": "error", "testID": 1, "error": "x"}) == [False]
        assert sink.named("testFailed") == []

    def test_json_array_not_handled(self, feed, sink: CollectingSink) -> None:
        assert feed("[1, 2, 3]") == [False]
        assert sink.lines == []

    def test_plain_line_passed_through(self, feed, sink: CollectingSink) -> None:
        """Non-JSON lines go to the raw output unchanged."""
        assert feed("00:01 +1: All tests passed!\n") == [True]
        assert sink.raw_lines == ["00:01 +1: All tests passed!"]

    def test_json_scalar_passed_through(self, feed, sink: CollectingSink) -> None:
        feed("42")
        assert sink.raw_lines == ["42"]

    def test_overflowing_id_dropped(self, feed, sink: CollectingSink, converter: TestEventsConverter) -> None:
        """An id too large for an integer makes the event malformed."""
        assert feed('{"type": "testStart", "test": {"id": 1e400, "name": "a"}}') == [False]
        assert sink.messages == []
        assert converter.registry.is_empty

    def test_overflowing_time_dropped(self, feed, sink: CollectingSink) -> None:
        feed(_test_start(1, "a", []))
        assert feed('{"type": "testDone", "testID": 1, "result": "success", "time": 1e400}') == [False]
        assert feed('{"type": "testDone", "testID": 1, "result": "success", "time": NaN}') == [False]
        assert sink.named("testFinished") == []

    def test_overflowing_start_time_uses_default(self, feed, sink: CollectingSink) -> None:
        """testStart time is optional, so a non-finite value falls back to 0."""
        assert feed('{"type": "testStart", "test": {"id": 1, "name": "a"}, "time": -1e400}') == [True]
        feed(_test_done(1, 7))
        assert sink.named("testFinished")[0].get("duration") == "7"

    def test_overflowing_suite_count_ignored(self, feed, converter: TestEventsConverter) -> None:
        feed({"type": "allSuites", "count": 2})
        assert feed('{"type": "allSuites", "count": 1e400}') == [True]
        assert converter.suite_count == 2


class TestBootstrapFailure:
    """Tests for runners that reject the JSON reporter."""

    LINE = 'Invalid argument(s): "json" is not an allowed value for option "reporter".'

    def test_first_line_synthesizes_failed_test(self, feed, sink: CollectingSink) -> None:
        feed(self.LINE)

        assert _names(sink) == ["testStarted", "testFailed", "testFinished"]
        assert all(m.get("name") == "Failed to start" for m in sink.messages)
        assert all(m.get("nodeId") == "1" and m.get("parentNodeId") == "0" for m in sink.messages)
        assert "0.12.9" in (sink.messages[1].get("message") or "")

    def test_later_line_passed_through(self, feed, sink: CollectingSink) -> None:
        feed("Running tests...", self.LINE)
        assert sink.messages == []
        assert sink.raw_lines == ["Running tests...", self.LINE]


class TestEntityIdentity:
    """Tests for in-place updates of registered entities."""

    def test_references_resolve_to_same_object(self, feed, converter: TestEventsConverter) -> None:
        feed(_test_start(1, "a", []), _error(1, "x"))

        test = converter.registry.test(1)
        assert isinstance(test, Test)
        assert test.start_reported is True
        assert test.error_reported is True


class TestExtensionHooks:
    """Tests for the overridable converter hooks."""

    def test_preprocess_test_start_runs_before_location(self, sink: CollectingSink) -> None:
        """A subclass can adjust a visible test before its hint is built."""

        class UppercasingConverter(TestEventsConverter):
            def __init__(self, sink: CollectingSink) -> None:
                super().__init__(sink)
                self.preprocessed: list[int] = []

            def preprocess_test_start(self, test: Test) -> None:
                self.preprocessed.append(test.id)
                test.name = test.name.upper()

        converter = UppercasingConverter(sink)
        converter.feed('{"type": "testStart", "test": {"id": 1, "name": "loading test/a_test.dart"}}')
        converter.feed('{"type": "testStart", "test": {"id": 2, "name": "adds"}}')

        assert converter.preprocessed == [2]
        assert sink.messages[0].get("name") == "ADDS"
        assert sink.messages[0].get("locationHint") == 'dart_location://test/a_test.dart,-1,-1,["ADDS"]'

    def test_default_hook_is_noop(self, converter: TestEventsConverter) -> None:
        test = Test(id=1, name="adds")
        converter.preprocess_test_start(test)
        assert test.name == "adds"
