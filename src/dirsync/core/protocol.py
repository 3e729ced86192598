"""Wire protocol shared with the dirsync server.

This module provides:
- ActionType, StatusType: Numeric header tags for outbound and inbound messages
- Message: One protocol unit (header + structured payload)
- encode_message / decode_message: Message <-> wire bytes
- FrameDecoder: Recovers delimiter-framed messages from a byte stream
- Path helpers: encode_path / decode_path ('.' <-> ':')
- Ack key helpers: ack_key_for / ack_key_from_reply
- ProtocolError, ParseError: Protocol-level exceptions

Wire format:
    Each message is a JSON object {"header": <int>, "data": <payload>}
    rendered with one-space indentation and a trailing newline, so every
    message ends with the delimiter b"\\n}\\n". Nested objects are indented
    and JSON strings escape newlines, so the delimiter never appears inside
    a message.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

DELIMITER = b"\n}\n"

PATH_SEPARATOR = "||"

LOGIN_KEY = "login"
SYNCH_KEY = "synch"

# Reasons of a service_unavailable reply that require a fresh login
LOGIN_RETRY_REASONS = frozenset({"login", "Communication error"})


class ProtocolError(Exception):
    """Message violates the protocol (unexpected header, bad payload)."""


class ParseError(ProtocolError):
    """Message could not be decoded from the wire."""


class ActionType(IntEnum):
    """Header tags of client -> server messages."""

    LOGIN = 0
    SYNCHRONIZE = 1
    CREATED = 2
    MODIFIED = 3
    ERASED = 4


class StatusType(IntEnum):
    """Header tags of server -> client messages."""

    COMPLETED = 0
    AUTHORIZED = 1
    UNAUTHORIZED = 2
    IN_NEED = 3
    NO_NEED = 4
    SERVICE_UNAVAILABLE = 5
    WRONG_ACTION = 6


Payload = dict[str, Any] | str | None


@dataclass(frozen=True)
class Message:
    """One protocol unit.

    Attributes:
        header: Action (outbound) or status (inbound) tag.
        payload: Structured body; a JSON object, a plain string or None.
    """

    header: int
    payload: Payload = None

    @property
    def text(self) -> str:
        """Payload as a string (empty when absent)."""
        if self.payload is None:
            return ""
        if isinstance(self.payload, str):
            return self.payload
        raise ProtocolError(f"Expected text payload for header {self.header}")

    def __repr__(self) -> str:
        return f"Message(header={self.header}, payload={_summarize(self.payload)})"


def _summarize(payload: Payload) -> str:
    if isinstance(payload, dict):
        return "{" + ", ".join(sorted(payload)) + "}"
    return repr(payload)


def encode_message(message: Message) -> bytes:
    """Serialize a message to its framed wire form.

    Args:
        message: Message to encode.

    Returns:
        UTF-8 bytes ending with DELIMITER.
    """
    document = {"header": int(message.header), "data": message.payload}
    return (json.dumps(document, indent=1) + "\n").encode("utf-8")


def decode_message(frame: bytes) -> Message:
    """Decode one framed message.

    Args:
        frame: Bytes of exactly one message, delimiter included.

    Returns:
        The decoded Message.

    Raises:
        ParseError: If the frame is not a well-formed message.
    """
    try:
        document = json.loads(frame.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseError(f"Malformed message: {e}") from e

    if not isinstance(document, dict):
        raise ParseError("Message is not a JSON object")

    header = document.get("header")
    if not isinstance(header, int) or isinstance(header, bool):
        raise ParseError(f"Invalid message header: {header!r}")

    payload = document.get("data")
    if payload is not None and not isinstance(payload, dict | str):
        raise ParseError(f"Invalid payload type: {type(payload).__name__}")

    return Message(header=header, payload=payload)


class FrameDecoder:
    """Accumulates stream bytes and splits them into message frames.

    Usage:
        decoder = FrameDecoder()
        for frame in decoder.feed(chunk):
            handle(decode_message(frame))
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for a delimiter."""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """Add received bytes and return every complete frame.

        Each frame runs from the start of the buffer through the delimiter
        and is removed from the buffer. Frames already buffered back-to-back
        are all returned by a single call.
        """
        self._buffer.extend(data)
        frames: list[bytes] = []
        while True:
            index = self._buffer.find(DELIMITER)
            if index < 0:
                break
            length = index + len(DELIMITER)
            frames.append(bytes(self._buffer[:length]))
            del self._buffer[:length]
        return frames

    def clear(self) -> None:
        """Drop any partial frame."""
        self._buffer.clear()


def encode_path(path: str) -> str:
    """Make a relative path safe for use as a payload field or key."""
    return path.replace(".", ":")


def decode_path(path: str) -> str:
    """Restore a relative path received from the server."""
    return path.replace(":", ".")


def parse_stale_paths(data: str) -> list[str]:
    """Split an in_need list ("a||b||") into decoded relative paths."""
    return [decode_path(item) for item in data.split(PATH_SEPARATOR) if item]


def ack_key_for(message: Message) -> str:
    """Derive the acknowledgement key the server will echo for a message.

    Raises:
        ProtocolError: If a file message has no path.
    """
    if message.header == ActionType.LOGIN:
        return LOGIN_KEY
    if message.header == ActionType.SYNCHRONIZE:
        return SYNCH_KEY
    payload = message.payload
    if not isinstance(payload, dict) or not isinstance(payload.get("path"), str):
        raise ProtocolError(f"Message with header {message.header} has no path")
    return payload["path"]


def ack_key_from_reply(data: str) -> str:
    """Extract the key from a completion reply ("<key> <free text>")."""
    key, sep, _ = data.rpartition(" ")
    return key if sep else data


# =============================================================================
# Message builders
# =============================================================================


def login_message(username: str, password_digest: str) -> Message:
    """Build the login message."""
    return Message(ActionType.LOGIN, {"username": username, "password": password_digest})


def synchronize_message(hashes: dict[str, str]) -> Message:
    """Build the reconciliation message from an encoded path -> hash map."""
    return Message(ActionType.SYNCHRONIZE, dict(hashes))


def file_message(
    action: ActionType,
    encoded_path: str,
    file_hash: str,
    is_file: bool,
    content: str,
) -> Message:
    """Build a created/modified message carrying base64 content."""
    if action not in (ActionType.CREATED, ActionType.MODIFIED):
        raise ValueError(f"Not a content action: {action!r}")
    return Message(
        action,
        {"path": encoded_path, "hash": file_hash, "isFile": is_file, "content": content},
    )


def erased_message(encoded_path: str) -> Message:
    """Build an erased message."""
    return Message(ActionType.ERASED, {"path": encoded_path})
