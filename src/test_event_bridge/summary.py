"""Summaries of converted test output.

Reads service-message lines (as written by the converter) and tallies the
results per test node, for a quick human-readable overview of a run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .service_messages import parse_service_message

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Statistics about the tests seen in a stream of service messages."""

    started: int = 0
    finished: int = 0
    failed: int = 0
    ignored: int = 0
    suites: int = 0
    declared: int = 0
    duration_ms: int = 0
    other_lines: int = 0
    failed_names: list[str] = field(default_factory=list)

    @property
    def passed(self) -> int:
        """Finished tests that neither failed nor were ignored."""
        return max(self.finished - self.failed - self.ignored, 0)

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage of decided tests."""
        decided = self.passed + self.failed
        if decided == 0:
            return 0.0
        return (self.passed / decided) * 100.0

    @property
    def all_passed(self) -> bool:
        return self.failed == 0


def summarize(lines: Iterable[str]) -> RunSummary:
    """Tally service messages from converter output.

    Failures and skips are counted once per node, even when a node gets
    several failure messages.

    Args:
        lines: Output lines; lines that are not service messages are counted
            in ``other_lines``.

    Returns:
        The collected RunSummary.
    """
    summary = RunSummary()
    failed_nodes: set[str] = set()
    ignored_nodes: set[str] = set()

    for line in lines:
        message = parse_service_message(line)
        if message is None:
            if line.strip():
                summary.other_lines += 1
            continue

        node = message.get("nodeId") or message.get("name") or ""
        if message.name == "testStarted":
            summary.started += 1
        elif message.name == "testFinished":
            summary.finished += 1
            duration = message.get("duration", "0") or "0"
            if duration.lstrip("-").isdigit():
                summary.duration_ms += int(duration)
        elif message.name == "testFailed" and node not in failed_nodes:
            failed_nodes.add(node)
            summary.failed += 1
            summary.failed_names.append(message.get("name") or node)
        elif message.name == "testIgnored" and node not in ignored_nodes:
            ignored_nodes.add(node)
            summary.ignored += 1
        elif message.name == "testSuiteStarted":
            summary.suites += 1
        elif message.name == "testCount":
            count = message.get("count", "0") or "0"
            if count.isdigit():
                summary.declared += int(count)

    logger.debug("Summarized %d started tests, %d failed", summary.started, summary.failed)
    return summary


def format_summary(summary: RunSummary) -> list[str]:
    """Render a RunSummary as console lines."""
    lines = [
        f"Tests started:  {summary.started}",
        f"Passed:         {summary.passed}",
        f"Failed:         {summary.failed}",
        f"Ignored:        {summary.ignored}",
        f"Groups:         {summary.suites}",
        f"Success rate:   {summary.success_rate:.1f}%",
        f"Total duration: {summary.duration_ms} ms",
    ]
    if summary.declared:
        lines.insert(1, f"Declared:       {summary.declared}")
    if summary.failed_names:
        lines.append("")
        lines.append("Failed tests:")
        lines.extend(f"  - {name}" for name in summary.failed_names)
    return lines
