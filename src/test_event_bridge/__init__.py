"""Test Event Bridge.

This package converts the JSON event stream of a test runner into the
service messages understood by test-result consumers, rebuilding the
suite -> group -> test tree along the way.
"""

from __future__ import annotations

from .completion import CompletionTracker
from .converter import TestEventsConverter
from .emitter import ProtocolEmitter, split_comparison_failure
from .entities import NO_NAME, EntityRegistry, Group, Metadata, Suite, Test
from .events import EventDecoder
from .exceptions import ConverterError, MalformedEvent, UnknownResult
from .location import FileLocationResolver, LocationResolver, NullLocationResolver
from .naming import NamingPolicy
from .service_messages import ServiceMessage, parse_service_message
from .sinks import CollectingSink, MessageSink, StreamSink

__all__ = [
    # Converter
    "TestEventsConverter",
    "EventDecoder",
    "CompletionTracker",
    "ProtocolEmitter",
    "NamingPolicy",
    "split_comparison_failure",
    # Entities
    "NO_NAME",
    "EntityRegistry",
    "Group",
    "Metadata",
    "Suite",
    "Test",
    # Errors
    "ConverterError",
    "MalformedEvent",
    "UnknownResult",
    # Locations
    "LocationResolver",
    "FileLocationResolver",
    "NullLocationResolver",
    # Output
    "ServiceMessage",
    "parse_service_message",
    "MessageSink",
    "StreamSink",
    "CollectingSink",
]
