"""Event decoder for the runner's JSON reporter output.

Each line of reporter output is one JSON object with a ``type``
discriminator. ``EventDecoder.decode`` turns such an object into one of the
typed event records below and resolves (or declares) the entities the event
refers to in the ``EntityRegistry``.

Scalar fields are extracted before any entity is declared, so an event that
fails with ``MalformedEvent`` leaves the registry as it was.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Union

from .entities import NO_NAME, EntityRegistry, Group, Metadata, Suite, Test
from .exceptions import MalformedEvent

logger = logging.getLogger(__name__)

TYPE_START = "start"
TYPE_SUITE = "suite"
TYPE_ERROR = "error"
TYPE_GROUP = "group"
TYPE_PRINT = "print"
TYPE_DONE = "done"
TYPE_ALL_SUITES = "allSuites"
TYPE_TEST_START = "testStart"
TYPE_TEST_DONE = "testDone"

RESULT_SUCCESS = "success"
RESULT_FAILURE = "failure"
RESULT_ERROR = "error"
KNOWN_RESULTS = frozenset({RESULT_SUCCESS, RESULT_FAILURE, RESULT_ERROR})

NO_MESSAGE = "<no message>"
NO_ERROR_MESSAGE = "<no error message>"
NO_STACK_TRACE = "<no stack trace>"
NO_RESULT = "<no result>"


@dataclass(frozen=True)
class TestStartEvent:
    """A test started. ``time`` is milliseconds since the run started."""

    __test__ = False

    test: Test
    metadata: Metadata
    time: int


@dataclass(frozen=True)
class TestDoneEvent:
    """A test completed with ``result`` (checked by the converter)."""

    __test__ = False

    test: Test
    result: str
    time: int


@dataclass(frozen=True)
class ErrorEvent:
    test: Test
    message: str
    stack_trace: str
    is_failure: bool


@dataclass(frozen=True)
class PrintEvent:
    test: Test
    message: str


@dataclass(frozen=True)
class GroupEvent:
    group: Group


@dataclass(frozen=True)
class SuiteEvent:
    suite: Suite


@dataclass(frozen=True)
class AllSuitesEvent:
    count: int | None


@dataclass(frozen=True)
class RunStartEvent:
    pass


@dataclass(frozen=True)
class RunDoneEvent:
    pass


@dataclass(frozen=True)
class UnknownEvent:
    """An event type this decoder does not handle (forward compatibility)."""

    type: str


Event = Union[
    TestStartEvent,
    TestDoneEvent,
    ErrorEvent,
    PrintEvent,
    GroupEvent,
    SuiteEvent,
    AllSuitesEvent,
    RunStartEvent,
    RunDoneEvent,
    UnknownEvent,
]


def _is_number(value: Any) -> bool:
    # json.loads turns 1e400 into inf and accepts NaN
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not isinstance(value, float) or math.isfinite(value)


def _require_int(obj: dict[str, Any], key: str) -> int:
    value = obj.get(key)
    if not _is_number(value):
        raise MalformedEvent(f"Value of '{key}' is not a number: {value!r}")
    return int(value)


def _require_bool(obj: dict[str, Any], key: str) -> bool:
    value = obj.get(key)
    if not isinstance(value, bool):
        raise MalformedEvent(f"Value of '{key}' is not a boolean: {value!r}")
    return value


def _optional_int(obj: dict[str, Any], key: str, default: int = -1) -> int:
    value = obj.get(key)
    if not _is_number(value):
        return default
    return int(value)


def _optional_str(obj: dict[str, Any], key: str, default: str | None) -> str | None:
    value = obj.get(key)
    if isinstance(value, str):
        return value
    if _is_number(value):
        return str(value)
    return default


def _text(obj: dict[str, Any], key: str, default: str) -> str:
    result = _optional_str(obj, key, default)
    return default if result is None else result


def _optional_ref(obj: dict[str, Any], key: str) -> int | None:
    value = obj.get(key)
    return int(value) if _is_number(value) else None


def _reference(obj: dict[str, Any], key: str) -> int | None:
    """Return the integer id stored under ``key``, or None when absent."""
    value = obj.get(key)
    if value is None:
        return None
    if not _is_number(value):
        raise MalformedEvent(f"Value of '{key}' is not an id: {value!r}")
    return int(value)


def _zero_based(value: int) -> int:
    return -1 if value < 0 else value - 1


class EventDecoder:
    """Decode JSON reporter events against an entity registry.

    Example:
        >>> registry = EntityRegistry()
        >>> decoder = EventDecoder(registry)
        >>> event = decoder.decode({"type": "testStart", "test": {"id": 1, "name": "foo"}})
        >>> event.test.name
        'foo'
    """

    def __init__(self, registry: EntityRegistry) -> None:
        self.registry = registry

    def decode(self, obj: dict[str, Any]) -> Event:
        """Classify one event object and resolve the entities it names.

        Args:
            obj: A decoded JSON object from the reporter.

        Returns:
            The typed event record. Unrecognized types yield UnknownEvent.

        Raises:
            MalformedEvent: If the type or a required field is missing or
                has the wrong kind, or a referenced entity is unknown.
        """
        event_type = obj.get("type")
        if not isinstance(event_type, str):
            raise MalformedEvent(f"Event has no type: {obj!r}")

        if event_type == TYPE_TEST_START:
            time = _optional_int(obj, "time", 0)
            nested = obj.get("test")
            test = self.resolve_test(obj)
            metadata = Metadata.from_json(nested.get("metadata")) if isinstance(nested, dict) else test.metadata
            return TestStartEvent(test=test, metadata=metadata, time=time)
        if event_type == TYPE_TEST_DONE:
            time = _require_int(obj, "time")
            result = _text(obj, "result", NO_RESULT)
            return TestDoneEvent(test=self.resolve_test(obj), result=result, time=time)
        if event_type == TYPE_ERROR:
            is_failure = _require_bool(obj, "isFailure")
            return ErrorEvent(
                test=self.resolve_test(obj),
                message=_text(obj, "error", NO_ERROR_MESSAGE),
                stack_trace=_text(obj, "stackTrace", NO_STACK_TRACE),
                is_failure=is_failure,
            )
        if event_type == TYPE_PRINT:
            return PrintEvent(test=self.resolve_test(obj), message=_text(obj, "message", NO_MESSAGE))
        if event_type == TYPE_GROUP:
            return GroupEvent(group=self.resolve_group(self._nested(obj, "group")))
        if event_type == TYPE_SUITE:
            return SuiteEvent(suite=self.resolve_suite(self._nested(obj, "suite")))
        if event_type == TYPE_ALL_SUITES:
            count = obj.get("count")
            return AllSuitesEvent(count=int(count) if _is_number(count) else None)
        if event_type == TYPE_START:
            return RunStartEvent()
        if event_type == TYPE_DONE:
            return RunDoneEvent()

        logger.debug("Ignoring event of unknown type %r", event_type)
        return UnknownEvent(type=event_type)

    @staticmethod
    def _nested(obj: dict[str, Any], key: str) -> dict[str, Any]:
        nested = obj.get(key)
        if not isinstance(nested, dict):
            raise MalformedEvent(f"Event has no '{key}' object: {obj!r}")
        return nested

    def resolve_test(self, obj: dict[str, Any]) -> Test:
        """Resolve the test an object declares or refers to.

        Resolution order: an ``id`` declares (or replaces) the test, a
        ``testID`` refers to an already registered test, and a nested
        ``test`` object is resolved recursively.
        """
        test_id = _reference(obj, "id")
        if test_id is not None:
            return self.registry.register_test(self._declare_test(test_id, obj))

        ref = _reference(obj, "testID")
        if ref is not None:
            test = self.registry.test(ref)
            if test is None:
                raise MalformedEvent(f"No test registered with id {ref}")
            return test

        nested = obj.get("test")
        if isinstance(nested, dict):
            return self.resolve_test(nested)
        raise MalformedEvent(f"No id in event: {obj!r}")

    def resolve_group(self, obj: dict[str, Any]) -> Group:
        group_id = _reference(obj, "id")
        if group_id is None:
            raise MalformedEvent(f"No id in group: {obj!r}")
        return self.registry.register_group(self._declare_group(group_id, obj))

    def resolve_suite(self, obj: dict[str, Any]) -> Suite:
        suite_id = _reference(obj, "id")
        if suite_id is None:
            raise MalformedEvent(f"No id in suite: {obj!r}")
        return self.registry.register_suite(
            Suite(
                id=suite_id,
                name=_text(obj, "path", NO_NAME),
                path=_optional_str(obj, "path", None),
                platform=_optional_str(obj, "platform", None),
            )
        )

    def _known_suite_id(self, obj: dict[str, Any]) -> int | None:
        suite_id = _optional_ref(obj, "suiteID")
        return suite_id if self.registry.suite(suite_id) is not None else None

    def _known_group_id(self, group_id: int | None, own_id: int | None = None) -> int | None:
        if group_id is None or group_id == own_id:
            return None
        return group_id if self.registry.group(group_id) is not None else None

    def _declare_test(self, test_id: int, obj: dict[str, Any]) -> Test:
        group_ids = obj.get("groupIDs")
        parent_id = None
        if group_ids is not None:
            if not isinstance(group_ids, list) or not all(_is_number(g) for g in group_ids):
                raise MalformedEvent(f"groupIDs is not a list of ids: {group_ids!r}")
            if group_ids:
                parent_id = self._known_group_id(int(group_ids[-1]))

        # root_* is the more precise location when present
        url = _optional_str(obj, "root_url", None)
        if url is not None:
            line = _optional_int(obj, "root_line")
            column = _optional_int(obj, "root_column")
        else:
            url = _optional_str(obj, "url", None)
            line = _optional_int(obj, "line")
            column = _optional_int(obj, "column")

        return Test(
            id=test_id,
            name=_text(obj, "name", NO_NAME),
            parent_id=parent_id,
            suite_id=self._known_suite_id(obj),
            metadata=Metadata.from_json(obj.get("metadata")),
            line=_zero_based(line),
            column=_zero_based(column),
            url=url,
        )

    def _declare_group(self, group_id: int, obj: dict[str, Any]) -> Group:
        return Group(
            id=group_id,
            name=_text(obj, "name", NO_NAME),
            parent_id=self._known_group_id(_optional_ref(obj, "parentID"), own_id=group_id),
            suite_id=self._known_suite_id(obj),
            metadata=Metadata.from_json(obj.get("metadata")),
            line=_zero_based(_optional_int(obj, "line")),
            column=_zero_based(_optional_int(obj, "column")),
            url=_optional_str(obj, "url", None),
            test_count=max(_optional_int(obj, "testCount", 0), 0),
        )
