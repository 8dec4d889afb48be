"""Entity model for the suite -> group -> test hierarchy.

Entities are created lazily by the event decoder and held in an
``EntityRegistry``: three id-keyed tables, one per category. Entities refer
to their parent group and owning suite by id only, so a parent that is
looked up independently (when new children arrive) is always the single
live object registered under that id.

The runner assigns ids per run; they are reused as table keys and are not
unique across runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Name given to entities the runner declares without a name (e.g. the
# implicit root group of every suite).
NO_NAME = "<no name>"


@dataclass(frozen=True)
class Metadata:
    """Skip information attached to a test or group.

    Attributes:
        skip: Whether the runner skipped the entity.
        skip_reason: Optional reason given for the skip.
    """

    skip: bool = False
    skip_reason: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> Metadata:
        """Build Metadata from a ``metadata`` sub-object.

        Missing or non-object input means "not skipped".
        """
        if not isinstance(data, dict):
            return cls()
        skip = data.get("skip")
        reason = data.get("skipReason")
        return cls(
            skip=skip if isinstance(skip, bool) else False,
            skip_reason=reason if isinstance(reason, str) else None,
        )


@dataclass
class Entity:
    """Fields shared by suites, groups, and tests.

    Attributes:
        id: Runner-assigned identifier, unique within a run.
        name: Raw name as given by the runner, ``NO_NAME`` if absent.
        parent_id: Id of the parent group, None for root-level entities.
        suite_id: Id of the owning suite, None if unknown or discarded.
        metadata: Skip flag and reason.
        line: 0-based source line, -1 if absent.
        column: 0-based source column, -1 if absent.
        url: Opaque location reference, resolved by a LocationResolver.
    """

    id: int
    name: str = NO_NAME
    parent_id: int | None = None
    suite_id: int | None = None
    metadata: Metadata = field(default_factory=Metadata)
    line: int = -1
    column: int = -1
    url: str | None = None


@dataclass
class Suite(Entity):
    """A test suite (one test file on one platform).

    ``path`` is None when the runner did not report one; such suites carry
    no location data and are dropped from the registry right away.
    """

    path: str | None = None
    platform: str | None = None

    @property
    def has_path(self) -> bool:
        return self.path is not None


@dataclass
class Group(Entity):
    """A group of tests.

    Attributes:
        test_count: Number of tests the runner declared for the group, 0 for
            legacy runners that do not report it.
        done_count: Completed tests, including completions cascaded up from
            descendant groups.
        finished: Whether the group's finish has already been processed.
    """

    test_count: int = 0
    done_count: int = 0
    finished: bool = False


@dataclass
class Test(Entity):
    """A single test, including the runner's virtual tests.

    Attributes:
        start_reported: A started message has been emitted for this test.
        error_reported: A failed message has been emitted for this test.
    """

    __test__ = False

    start_reported: bool = False
    error_reported: bool = False


class EntityRegistry:
    """Per-run lookup tables for tests, groups, and suites."""

    def __init__(self) -> None:
        self.tests: dict[int, Test] = {}
        self.groups: dict[int, Group] = {}
        self.suites: dict[int, Suite] = {}

    def test(self, test_id: int) -> Test | None:
        return self.tests.get(test_id)

    def group(self, group_id: int | None) -> Group | None:
        if group_id is None:
            return None
        return self.groups.get(group_id)

    def suite(self, suite_id: int | None) -> Suite | None:
        if suite_id is None:
            return None
        return self.suites.get(suite_id)

    def register_test(self, test: Test) -> Test:
        self.tests[test.id] = test
        return test

    def register_group(self, group: Group) -> Group:
        self.groups[group.id] = group
        return group

    def register_suite(self, suite: Suite) -> Suite:
        self.suites[suite.id] = suite
        return suite

    def discard_suite(self, suite_id: int) -> None:
        self.suites.pop(suite_id, None)

    def parent_of(self, entity: Entity) -> Group | None:
        """Return the parent group of an entity, if it is registered."""
        return self.group(entity.parent_id)

    def suite_of(self, entity: Entity) -> Suite | None:
        """Return the owning suite of an entity, if it is registered."""
        return self.suite(entity.suite_id)

    def ancestors(self, entity: Entity) -> list[Group]:
        """Return the parent chain of an entity, nearest first."""
        chain: list[Group] = []
        seen: set[int] = set()
        parent = self.parent_of(entity)
        while parent is not None and parent.id not in seen:
            seen.add(parent.id)
            chain.append(parent)
            parent = self.parent_of(parent)
        return chain

    def clear(self) -> None:
        """Drop all entities (used on run start and run done)."""
        self.tests.clear()
        self.groups.clear()
        self.suites.clear()

    @property
    def is_empty(self) -> bool:
        return not (self.tests or self.groups or self.suites)
