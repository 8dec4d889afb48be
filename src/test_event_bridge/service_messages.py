"""Service message codec.

Encodes and parses the line-based ``##teamcity[...]`` service messages that
test-result consumers read. Attribute values are escaped with the ``|``
escape character:

    ##teamcity[testStarted name='foo' nodeId='1' parentNodeId='0']

The converter only uses the encode side; ``parse_service_message`` is used
by the summary command and by the tests.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

MESSAGE_PREFIX = "##teamcity["
MESSAGE_SUFFIX = "]"

_ESCAPES = {
    "|": "||",
    "'": "|'",
    "\n": "|n",
    "\r": "|r",
    "[": "|[",
    "]": "|]",
    "\u0085": "|x",
    "\u2028": "|l",
    "\u2029": "|p",
}
_UNESCAPES = {
    "|": "|",
    "'": "'",
    "n": "\n",
    "r": "\r",
    "[": "[",
    "]": "]",
    "x": "\u0085",
    "l": "\u2028",
    "p": "\u2029",
}

_NAME_PATTERN = re.compile(r"##teamcity\[([A-Za-z][\w.-]*)")
_ATTRIBUTE_PATTERN = re.compile(r"\s*([A-Za-z_][\w.-]*)='((?:[^'|]|\|.)*)'")
_SINGLE_VALUE_PATTERN = re.compile(r"\s*'((?:[^'|]|\|.)*)'\s*$")
_ESCAPE_SEQUENCE = re.compile(r"\|(0x[0-9a-fA-F]{4}|.)", re.DOTALL)


def escape_value(value: str) -> str:
    """Escape an attribute value for embedding between single quotes."""
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def _unescape_match(match: re.Match[str]) -> str:
    code = match.group(1)
    if len(code) == 6:
        return chr(int(code[2:], 16))
    return _UNESCAPES.get(code, code)


def unescape_value(value: str) -> str:
    """Reverse ``escape_value``, including ``|0xNNNN`` unicode escapes."""
    return _ESCAPE_SEQUENCE.sub(_unescape_match, value)


@dataclass
class ServiceMessage:
    """One outbound protocol message.

    Attributes:
        name: Message kind, e.g. ``testStarted`` or ``testSuiteFinished``.
        attributes: Ordered attribute mapping; insertion order is kept on
            the wire.
    """

    name: str
    attributes: dict[str, str] = field(default_factory=dict)

    def add(self, key: str, value: str) -> ServiceMessage:
        """Append an attribute and return the message for chaining."""
        self.attributes[key] = value
        return self

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.attributes.get(key, default)

    def encode(self) -> str:
        """Render the message as one line of wire text (no trailing newline)."""
        parts = [f"{MESSAGE_PREFIX}{self.name}"]
        for key, value in self.attributes.items():
            parts.append(f"{key}='{escape_value(value)}'")
        return " ".join(parts) + MESSAGE_SUFFIX

    def __str__(self) -> str:
        return self.encode()


def is_service_message(line: str) -> bool:
    """Check whether a line looks like a service message."""
    stripped = line.strip()
    return stripped.startswith(MESSAGE_PREFIX) and stripped.endswith(MESSAGE_SUFFIX)


def parse_service_message(line: str) -> ServiceMessage | None:
    """Parse one line of wire text back into a ServiceMessage.

    Single-value messages (``##teamcity[name 'value']``) are returned with
    the value stored under the ``value`` attribute.

    Args:
        line: Raw text line, surrounding whitespace is ignored.

    Returns:
        The parsed message, or None if the line is not a service message.
    """
    stripped = line.strip()
    if not is_service_message(stripped):
        return None

    match = _NAME_PATTERN.match(stripped)
    if match is None:
        return None

    message = ServiceMessage(match.group(1))
    body = stripped[match.end():-len(MESSAGE_SUFFIX)]
    if not body.strip():
        return message

    single = _SINGLE_VALUE_PATTERN.match(body)
    if single is not None:
        return message.add("value", unescape_value(single.group(1)))

    pos = 0
    while pos < len(body):
        attr = _ATTRIBUTE_PATTERN.match(body, pos)
        if attr is None:
            if body[pos:].strip():
                return None
            break
        message.add(attr.group(1), unescape_value(attr.group(2)))
        pos = attr.end()
    return message
