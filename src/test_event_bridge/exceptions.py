"""Exceptions for the test event bridge.

This module defines the exception hierarchy raised while decoding runner
events, following the error handling patterns established in the codebase.
"""

from __future__ import annotations


class ConverterError(Exception):
    """Base exception for all converter-related errors.

    This is the root exception class for the package.
    All other converter exceptions inherit from this class.
    """

    pass


class MalformedEvent(ConverterError):
    """Raised when a structured event cannot be decoded.

    This exception is raised when:
    - A required numeric or boolean field is missing or has the wrong kind
    - The event has no ``type`` discriminator
    - An entity reference cannot be resolved ("no id in event")

    Only the offending event is dropped; the converter keeps its state.
    """

    pass


class UnknownResult(ConverterError):
    """Raised when a ``testDone`` event carries an unrecognized result.

    Unlike ``MalformedEvent`` this error propagates out of
    ``TestEventsConverter.feed`` and aborts the whole call.
    """

    pass
