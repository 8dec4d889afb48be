"""Root conftest.py for pytest configuration.

Adds project root to sys.path so test modules are importable by dotted path,
and provides the converter fixtures shared by unit and integration tests.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from test_event_bridge.converter import TestEventsConverter
from test_event_bridge.sinks import CollectingSink

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

FeedEvents = Callable[..., list[bool]]


@pytest.fixture
def sink() -> CollectingSink:
    """Create an in-memory sink."""
    return CollectingSink()


@pytest.fixture
def converter(sink: CollectingSink) -> TestEventsConverter:
    """Create a converter writing to the in-memory sink."""
    return TestEventsConverter(sink)


@pytest.fixture
def feed(converter: TestEventsConverter) -> FeedEvents:
    """Feed event dicts (or raw strings) to the converter, one line each."""

    def _feed(*events: dict[str, Any] | str) -> list[bool]:
        results = []
        for event in events:
            line = event if isinstance(event, str) else json.dumps(event)
            results.append(converter.feed(line))
        return results

    return _feed
