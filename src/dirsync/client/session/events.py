"""Typed events consumed by the session arbitration loop.

Producers:
- Console input thread: CredentialsReady, CredentialsFailed, ResyncRequested
- Directory watcher thread: WatchEvent
- Reader task: InboundMessage, ReadFailed
- Outbound queue: WriteFailed
- Any thread: StopRequested

Read and write failures carry the connection generation they belong to,
so failures of a superseded connection can be ignored.
"""

from __future__ import annotations

from dataclasses import dataclass

from dirsync.client.credentials import Credentials
from dirsync.core.protocol import Message
from dirsync.core.types import FileStatus


@dataclass(frozen=True)
class CredentialsReady:
    credentials: Credentials


@dataclass(frozen=True)
class CredentialsFailed:
    error: BaseException


@dataclass(frozen=True)
class WatchEvent:
    path: str
    status: FileStatus
    is_file: bool


@dataclass(frozen=True)
class InboundMessage:
    message: Message
    generation: int


@dataclass(frozen=True)
class ReadFailed:
    error: Exception
    generation: int


@dataclass(frozen=True)
class WriteFailed:
    error: Exception
    generation: int


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class ResyncRequested:
    """The user typed the exit command."""


SessionEvent = (
    CredentialsReady
    | CredentialsFailed
    | WatchEvent
    | InboundMessage
    | ReadFailed
    | WriteFailed
    | StopRequested
    | ResyncRequested
)
