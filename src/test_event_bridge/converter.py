"""Convert test runner JSON events into service messages.

``TestEventsConverter`` is fed the runner's output one line at a time. JSON
objects are decoded into events and folded into the converter's state,
producing zero or more service messages per line. Lines that are not JSON
are passed through unchanged, since some runner versions print plain
status lines.

Usage:
    sink = CollectingSink()
    converter = TestEventsConverter(sink)
    for line in runner_output:
        converter.feed(line)

NOTE: The runner runs tests asynchronously. A ``testDone`` event may be
followed some time later by an ``error`` event for the same test, which
should turn a passed test into a failure. That case is not handled: the
error is reported against the already finished test.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from .completion import CompletionTracker
from .emitter import DEFAULT_LOCATION_PREFIX, ProtocolEmitter
from .entities import EntityRegistry, Test
from .events import (
    KNOWN_RESULTS,
    AllSuitesEvent,
    ErrorEvent,
    EventDecoder,
    GroupEvent,
    PrintEvent,
    RunDoneEvent,
    RunStartEvent,
    SuiteEvent,
    TestDoneEvent,
    TestStartEvent,
    UnknownEvent,
)
from .exceptions import MalformedEvent, UnknownResult
from .location import LocationResolver
from .naming import NamingPolicy
from .sinks import MessageSink

logger = logging.getLogger(__name__)

BOOTSTRAP_ERROR_MARKER = '"json" is not an allowed value for option "reporter"'


class TestEventsConverter:
    """Stateful, single-threaded converter from runner events to messages.

    Attributes:
        sink: Receives produced messages and passed-through lines.
        registry: Tests, groups, and suites of the current run.
        suite_count: Total number of suites announced by ``allSuites``.
        lines_fed: Number of lines fed so far.
    """

    __test__ = False

    def __init__(
        self,
        sink: MessageSink,
        resolver: LocationResolver | None = None,
        *,
        location_prefix: str = DEFAULT_LOCATION_PREFIX,
    ) -> None:
        self.sink = sink
        self.registry = EntityRegistry()
        self.naming = NamingPolicy(self.registry)
        self.emitter = ProtocolEmitter(sink, self.naming, resolver, location_prefix)
        self.tracker = CompletionTracker(self.registry, self.emitter.suite_finished)
        self.decoder = EventDecoder(self.registry)
        self.suite_count = 0
        self.lines_fed = 0
        self._start_times: dict[int, int] = {}
        self._handlers: dict[type, Callable[[Any], bool]] = {
            TestStartEvent: self._handle_test_start,
            TestDoneEvent: self._handle_test_done,
            ErrorEvent: self._handle_error,
            PrintEvent: self._handle_print,
            GroupEvent: self._handle_group,
            SuiteEvent: self._handle_suite,
            AllSuitesEvent: self._handle_all_suites,
            RunStartEvent: self._handle_start,
            RunDoneEvent: self._handle_done,
            UnknownEvent: lambda event: True,
        }

    def feed(self, line: str) -> bool:
        """Process one line of runner output.

        Args:
            line: One output line; a trailing line break is ignored.

        Returns:
            True if the line was processed and all output was accepted.
            False for malformed events and unhandled JSON arrays.

        Raises:
            UnknownResult: If a ``testDone`` event has an unknown result.
        """
        text = line.rstrip("\r\n")
        first_line = self.lines_fed == 0
        self.lines_fed += 1
        logger.debug("<<< %s", text.strip())

        try:
            data = json.loads(text)
        except ValueError:
            if first_line and BOOTSTRAP_ERROR_MARKER in text:
                return self.emitter.bootstrap_failure()
            return self._pass_through(text)

        if isinstance(data, list):
            return self.process_array(data)
        if not isinstance(data, dict):
            return self._pass_through(text)

        try:
            return self.process(data)
        except MalformedEvent as exc:
            logger.warning("Dropping malformed event: %s (line: %s)", exc, text)
            return False

    def process(self, obj: dict[str, Any]) -> bool:
        """Decode and handle one event object.

        Raises:
            MalformedEvent: If the event cannot be decoded.
            UnknownResult: If a ``testDone`` event has an unknown result.
        """
        event = self.decoder.decode(obj)
        return self._handlers[type(event)](event)

    def process_array(self, array: list[Any]) -> bool:
        """Hook for JSON arrays; the JSON reporter never emits them."""
        logger.debug("Ignoring JSON array of %d items", len(array))
        return False

    def preprocess_test_start(self, test: Test) -> None:
        """Hook called for a visible test before its location hint is computed."""

    def reset(self) -> None:
        """Forget all state of the current run."""
        self.registry.clear()
        self._start_times.clear()
        self.suite_count = 0
        self.emitter.last_location = None

    def _pass_through(self, text: str) -> bool:
        logger.debug(">>> %s", text)
        return self.sink.emit_raw(text)

    def _handle_test_start(self, event: TestStartEvent) -> bool:
        test = event.test
        self._start_times[test.id] = event.time

        if self.naming.should_hide_if_passed(test):
            # reported as a normal test only if an error arrives for it
            self.emitter.remember_virtual_location(test)
            test.start_reported = False
            return True

        test.start_reported = True
        self.preprocess_test_start(test)
        ok = self.emitter.test_started(test)
        if event.metadata.skip:
            ok &= self.emitter.test_ignored(test, event.metadata.skip_reason)
        return ok

    def _handle_test_done(self, event: TestDoneEvent) -> bool:
        test = event.test
        if not test.start_reported:
            return True

        if event.result not in KNOWN_RESULTS:
            raise UnknownResult(f"Unknown result {event.result!r} for test {test.id}")

        duration = event.time - self._start_times.get(test.id, 0)
        ok = self.emitter.test_finished(test, duration)
        ok &= self.tracker.test_done(test)
        return ok

    def _handle_error(self, event: ErrorEvent) -> bool:
        test = event.test
        ok = True

        if not test.start_reported:
            test.start_reported = True
            ok = self.emitter.test_started(test, with_location=False)

        if test.error_reported:
            ok &= self.emitter.test_std_err(test, event.message)
        else:
            test.error_reported = True
            ok &= self.emitter.test_failed(test, event.message, is_failure=event.is_failure)

        if event.stack_trace.strip():
            ok &= self.emitter.test_std_err(test, event.stack_trace)
        return ok

    def _handle_print(self, event: PrintEvent) -> bool:
        test = event.test
        ok = True

        if not test.start_reported:
            # output of a passing setUpAll/tearDownAll does not make it visible
            if self.naming.is_hook(test):
                return True
            test.start_reported = True
            ok = self.emitter.test_started(test, with_location=False)

        ok &= self.emitter.test_std_out(test, event.message)
        return ok

    def _handle_group(self, event: GroupEvent) -> bool:
        group = event.group
        ok = True
        if self.registry.parent_of(group) is None and group.test_count > 0:
            ok = self.emitter.test_count(group.test_count)
        ok &= self.emitter.suite_started(group)
        return ok

    def _handle_suite(self, event: SuiteEvent) -> bool:
        suite = event.suite
        if not suite.has_path:
            self.registry.discard_suite(suite.id)
        return True

    def _handle_all_suites(self, event: AllSuitesEvent) -> bool:
        if event.count is not None:
            self.suite_count = event.count
        return True

    def _handle_start(self, event: RunStartEvent) -> bool:
        self.reset()
        return self.emitter.run_started()

    def _handle_done(self, event: RunDoneEvent) -> bool:
        self.tracker.flush()
        self.reset()
        return True
