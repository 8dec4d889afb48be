"""Visibility and naming rules for reported entities.

The runner creates bookkeeping nodes that should not show up in the test
tree: the unnamed root group of each suite ("artificial" when it has no
suite path either) and virtual tests for suite loading/compiling and for
``setUpAll``/``tearDownAll`` hooks. Virtual tests stay hidden unless they
fail.

The runner also prefixes every test and group name with the names of its
enclosing groups; ``base_name`` recovers the local segment.
"""

from __future__ import annotations

from .entities import NO_NAME, Entity, EntityRegistry, Group, Test

LOADING_PREFIX = "loading "
COMPILING_PREFIX = "compiling "
VIRTUAL_TEST_PREFIXES = (LOADING_PREFIX, COMPILING_PREFIX)
SET_UP_ALL_VIRTUAL_TEST_NAME = "(setUpAll)"
TEAR_DOWN_ALL_VIRTUAL_TEST_NAME = "(tearDownAll)"

# Sentinel parent id for entities attached to the tree root.
ROOT_NODE_ID = 0

_CHARACTER_ESCAPES = {
    "\t": "\\t",
    "\b": "\\b",
    "\n": "\\n",
    "\r": "\\r",
    "\f": "\\f",
    "\\": "\\\\",
    '"': '\\"',
}


def file_name(path: str) -> str:
    """Return the last segment of a ``/`` or ``\\`` separated path."""
    return path.replace("\\", "/").rsplit("/", 1)[-1]


def escape_string_characters(text: str) -> str:
    """Escape control characters, backslashes, and double quotes."""
    result: list[str] = []
    for ch in text:
        if ch in _CHARACTER_ESCAPES:
            result.append(_CHARACTER_ESCAPES[ch])
        elif ord(ch) < 0x20:
            result.append(f"\\u{ord(ch):04x}")
        else:
            result.append(ch)
    return "".join(result)


def virtual_test_path(name: str) -> str | None:
    """Return the suite path encoded in a loading/compiling test name."""
    for prefix in VIRTUAL_TEST_PREFIXES:
        if name.startswith(prefix):
            return name[len(prefix):]
    return None


class NamingPolicy:
    """Answer visibility and naming questions against a registry."""

    def __init__(self, registry: EntityRegistry) -> None:
        self.registry = registry

    def has_suite(self, entity: Entity) -> bool:
        """True if the entity belongs to a suite with a known path."""
        suite = self.registry.suite_of(entity)
        return suite is not None and suite.has_path

    def is_artificial(self, entity: Entity) -> bool:
        """True for unnamed root entities without a suite path."""
        return (
            entity.name == NO_NAME
            and self.registry.parent_of(entity) is None
            and not self.has_suite(entity)
        )

    def _is_file_level_group(self, entity: Entity) -> bool:
        return (
            isinstance(entity, Group)
            and entity.name == NO_NAME
            and self.registry.parent_of(entity) is None
        )

    def has_valid_parent(self, entity: Entity) -> bool:
        parent = self.registry.parent_of(entity)
        return parent is not None and not self.is_artificial(parent)

    def valid_parent_id(self, entity: Entity) -> int:
        """Id of the parent group as reported, ROOT_NODE_ID if hidden or absent."""
        parent = self.registry.parent_of(entity)
        if parent is None or self.is_artificial(parent):
            return ROOT_NODE_ID
        return parent.id

    def base_name(self, entity: Entity) -> str:
        """Compute the display name of an entity.

        Rules, first match wins:
        - root test named "loading <path>"/"compiling <path>": prefix plus
          the file name of the path
        - any other root test: the raw name
        - unnamed root group of a suite with a path: the suite's file name
        - group directly under an unnamed root group: the raw name
        - name prefixed by the (visible) parent's name and a space: the
          remainder
        - otherwise the raw name
        """
        name = entity.name
        parent = self.registry.parent_of(entity)

        if isinstance(entity, Test) and parent is None:
            for prefix in VIRTUAL_TEST_PREFIXES:
                if name.startswith(prefix):
                    return prefix + file_name(name[len(prefix):])
            return name

        if isinstance(entity, Group):
            suite = self.registry.suite_of(entity)
            if name == NO_NAME and parent is None and suite is not None and suite.path is not None:
                return file_name(suite.path)
            if parent is not None and parent.name == NO_NAME and self.registry.parent_of(parent) is None:
                return name

        if parent is not None and not self.is_artificial(parent):
            prefix = parent.name + " "
            if name.startswith(prefix):
                return name[len(prefix):]

        return name

    def name_list(self, entity: Entity) -> list[str]:
        """Escaped display names from the outermost visible group to the entity.

        The unnamed root group of a suite is never part of the list.
        """
        chain: list[Entity] = [entity, *self.registry.ancestors(entity)]
        return [
            escape_string_characters(self.base_name(node))
            for node in reversed(chain)
            if not self._is_file_level_group(node)
        ]

    def is_hook(self, test: Test) -> bool:
        """True for the setUpAll/tearDownAll virtual tests."""
        return self.base_name(test) in (SET_UP_ALL_VIRTUAL_TEST_NAME, TEAR_DOWN_ALL_VIRTUAL_TEST_NAME)

    def should_hide_if_passed(self, test: Test) -> bool:
        """Decide whether a test is a virtual test to report only on failure.

        Hidden tests are loading/compiling tests at the root, a setUpAll
        test before any sibling test finished, and a tearDownAll test after
        at least one did.
        """
        group = self.registry.parent_of(test)
        if group is None:
            return test.name.startswith(VIRTUAL_TEST_PREFIXES)
        base = self.base_name(test)
        if group.done_count == 0:
            return base == SET_UP_ALL_VIRTUAL_TEST_NAME
        return base == TEAR_DOWN_ALL_VIRTUAL_TEST_NAME
