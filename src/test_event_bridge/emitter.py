"""Protocol emitter: builds service messages for the test tree.

Every message about a test or group carries ``nodeId`` and ``parentNodeId``
so the consumer can rebuild the tree; ``parentNodeId`` is 0 for nodes
attached to the root. Test and group start messages also carry a
``locationHint`` of the form::

    <prefix><path>,<line>,<column>,<json list of names>

Failure messages of the form ``Expected: ...\\n  Actual: ...`` are split
into ``expected``/``actual`` attributes so the consumer can show a diff.
"""

from __future__ import annotations

import json
import logging
import re

from .entities import Entity, Group, Test
from .location import LocationResolver, NullLocationResolver
from .naming import ROOT_NODE_ID, NamingPolicy, virtual_test_path
from .service_messages import ServiceMessage
from .sinks import MessageSink

logger = logging.getLogger(__name__)

DEFAULT_LOCATION_PREFIX = "dart_location://"
UNKNOWN_LOCATION = "unknown"

EXPECTED = "Expected: "
EXPECTED_ACTUAL_RESULT = re.compile(r"Expected: (.*)\n {2}Actual: (.*)\n *\^\n Differ.*\n")
COMPARISON_FAILED = "Comparison failed"

RUN_STARTED_MESSAGE = "enteredTheMatrix"
BOOTSTRAP_TEST_NAME = "Failed to start"
BOOTSTRAP_FAILURE_MESSAGE = (
    "Please update your pubspec.yaml dependency on package:test to version 0.12.9 or later."
)


def append_line_break(text: str) -> str:
    return text if text.endswith("\n") else text + "\n"


def split_comparison_failure(message: str) -> tuple[str, str | None, str | None]:
    """Split an ``Expected:``/``Actual:`` failure message.

    Args:
        message: Error text reported by the runner.

    Returns:
        Tuple of (headline, expected, actual). When no comparison is found
        the message is returned unchanged with None for both values.
    """
    index = message.find(EXPECTED)
    if index < 0:
        return message, None, None
    match = EXPECTED_ACTUAL_RESULT.search(message, index)
    if match is None:
        return message, None, None
    headline = COMPARISON_FAILED if index == 0 else message[:index]
    return headline, match.group(1), match.group(2)


class ProtocolEmitter:
    """Build and send service messages for tests and groups.

    Attributes:
        sink: Destination of the messages.
        naming: Display names and visibility of entities.
        resolver: Resolves entity urls to file paths.
        location_prefix: Scheme prepended to paths in location hints.
        last_location: Location of the last loading/compiling virtual
            test, the fallback for entities without a resolvable location.
    """

    def __init__(
        self,
        sink: MessageSink,
        naming: NamingPolicy,
        resolver: LocationResolver | None = None,
        location_prefix: str = DEFAULT_LOCATION_PREFIX,
    ) -> None:
        self.sink = sink
        self.naming = naming
        self.resolver = resolver or NullLocationResolver()
        self.location_prefix = location_prefix
        self.last_location: str | None = None

    def _finish(self, message: ServiceMessage, node_id: int, parent_id: int) -> bool:
        message.add("nodeId", str(node_id))
        message.add("parentNodeId", str(parent_id))
        return self.sink.emit(message)

    def _send(self, message: ServiceMessage, entity: Entity) -> bool:
        return self._finish(message, entity.id, self.naming.valid_parent_id(entity))

    def _named(self, kind: str, entity: Entity) -> ServiceMessage:
        return ServiceMessage(kind).add("name", self.naming.base_name(entity))

    def remember_virtual_location(self, test: Test) -> None:
        """Keep the suite path of a loading/compiling test as fallback location."""
        path = virtual_test_path(test.name)
        if path:
            self.last_location = self.location_prefix + path

    def location_hint(self, entity: Entity) -> str:
        """Compute the locationHint attribute value for an entity."""
        location = None
        path = self.resolver.resolve(entity.url) if entity.url else None
        if path is not None:
            location = self.location_prefix + path
        else:
            suite = self.naming.registry.suite_of(entity)
            if suite is not None and suite.path is not None:
                location = self.location_prefix + suite.path
            else:
                location = self.last_location

        if location is None:
            return UNKNOWN_LOCATION
        names = json.dumps(self.naming.name_list(entity), separators=(",", ":"), ensure_ascii=False)
        return f"{location},{entity.line},{entity.column},{names}"

    def test_started(self, test: Test, *, with_location: bool = True) -> bool:
        message = self._named("testStarted", test)
        if with_location:
            message.add("locationHint", self.location_hint(test))
        return self._send(message, test)

    def test_ignored(self, test: Test, reason: str | None = None) -> bool:
        message = self._named("testIgnored", test)
        if reason is not None:
            message.add("message", reason)
        return self._send(message, test)

    def test_finished(self, test: Test, duration: int) -> bool:
        message = self._named("testFinished", test).add("duration", str(duration))
        return self._send(message, test)

    def test_failed(self, test: Test, error: str, *, is_failure: bool) -> bool:
        """Report the first failure of a test.

        Comparison failures get ``expected``/``actual`` attributes; errors
        that are not assertion failures get ``error='true'``.
        """
        message = self._named("testFailed", test)
        headline, expected, actual = split_comparison_failure(error)
        if expected is not None and actual is not None:
            message.add("expected", expected)
            message.add("actual", actual)
        if not is_failure:
            message.add("error", "true")
        message.add("message", append_line_break(headline))
        return self._send(message, test)

    def test_std_out(self, test: Test, text: str) -> bool:
        message = self._named("testStdOut", test).add("out", append_line_break(text))
        return self._send(message, test)

    def test_std_err(self, test: Test, text: str) -> bool:
        message = self._named("testStdErr", test).add("out", append_line_break(text))
        return self._send(message, test)

    def suite_started(self, group: Group) -> bool:
        if self.naming.is_artificial(group):
            return True
        message = self._named("testSuiteStarted", group)
        message.add("locationHint", self.location_hint(group))
        return self._send(message, group)

    def suite_finished(self, group: Group) -> bool:
        if self.naming.is_artificial(group):
            return True
        return self._send(self._named("testSuiteFinished", group), group)

    def test_count(self, count: int) -> bool:
        return self.sink.emit(ServiceMessage("testCount").add("count", str(count)))

    def run_started(self) -> bool:
        return self.sink.emit(ServiceMessage(RUN_STARTED_MESSAGE))

    def bootstrap_failure(self) -> bool:
        """Report a runner that rejected the JSON reporter as a failed test."""
        logger.warning("Test runner does not support the JSON reporter")
        started = ServiceMessage("testStarted").add("name", BOOTSTRAP_TEST_NAME)
        failed = (
            ServiceMessage("testFailed")
            .add("name", BOOTSTRAP_TEST_NAME)
            .add("message", BOOTSTRAP_FAILURE_MESSAGE)
        )
        finished = ServiceMessage("testFinished").add("name", BOOTSTRAP_TEST_NAME)
        ok = self._finish(started, 1, ROOT_NODE_ID)
        ok &= self._finish(failed, 1, ROOT_NODE_ID)
        ok &= self._finish(finished, 1, ROOT_NODE_ID)
        return ok
