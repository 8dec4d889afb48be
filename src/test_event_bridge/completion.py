"""Group completion tracking.

Every finished test increments the done-count of its parent group and of
all groups above it. A group whose done-count reaches its declared test
count is finished, which may in turn finish its parent. Groups from legacy
runners declare no test count (0) and are only finished by ``flush`` when
the run is done.
"""

from __future__ import annotations

import logging
from typing import Callable

from .entities import EntityRegistry, Group, Test

logger = logging.getLogger(__name__)

GroupFinishedCallback = Callable[[Group], bool]


class CompletionTracker:
    """Track done-counts and finish groups exactly once.

    Attributes:
        registry: Entity tables of the current run.
        on_group_finished: Called once per finished group; returns whether
            the resulting output was accepted.
    """

    def __init__(self, registry: EntityRegistry, on_group_finished: GroupFinishedCallback) -> None:
        self.registry = registry
        self.on_group_finished = on_group_finished

    def test_done(self, test: Test) -> bool:
        """Record a finished test and cascade group completion upwards."""
        parent = self.registry.parent_of(test)
        if parent is None:
            return True
        for group in [parent, *self.registry.ancestors(parent)]:
            self._increment(group)
        return self.check_group_done(parent)

    @staticmethod
    def _increment(group: Group) -> None:
        if group.test_count > 0 and group.done_count >= group.test_count:
            logger.debug(
                "Group %d already has %d of %d tests done", group.id, group.done_count, group.test_count
            )
            return
        group.done_count += 1

    def check_group_done(self, group: Group) -> bool:
        """Finish ``group`` and its ancestors while each has all tests done."""
        for node in [group, *self.registry.ancestors(group)]:
            if node.test_count <= 0 or node.done_count != node.test_count:
                break
            if not self.finish_group(node):
                return False
        return True

    def finish_group(self, group: Group) -> bool:
        """Finish a group; a second call for the same group is a no-op."""
        if group.finished:
            return True
        group.finished = True
        logger.debug("Group %d finished (%d tests)", group.id, group.done_count)
        return self.on_group_finished(group)

    def flush(self) -> None:
        """Force-finish every group that has not finished yet.

        Used when the run is done; legacy groups without a declared test
        count can only be finished here. The order is unspecified.
        """
        for group in list(self.registry.groups.values()):
            if not group.finished:
                self.finish_group(group)
