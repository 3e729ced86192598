"""Outbound message queue with a single write in flight.

Producers may enqueue from any thread. Entries are transmitted in FIFO
order on the session's event loop, one at a time: the head stays queued
while it is being written and is removed only once the write succeeded.

Architecture:
    producers ─enqueue─► OutboundQueue ─send─► transport
                              │
                      on_write (arm ack) / on_failed (close session)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from dirsync.core.protocol import Message, ack_key_for, encode_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundEntry:
    """Message awaiting transmission.

    Attributes:
        message: Message to write.
        ack_key: Key the server reply will carry.
    """

    message: Message
    ack_key: str


SendFunc = Callable[[bytes], Awaitable[None]]


class OutboundQueue:
    """Thread-safe FIFO serializing concurrent producers into one stream.

    Usage:
        queue = OutboundQueue(loop, send, on_write=tracker_arm, on_failed=fail)
        queue.enqueue(message)  # from any thread
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        send: SendFunc,
        on_write: Callable[[OutboundEntry], None],
        on_failed: Callable[[Exception, int], None],
    ) -> None:
        """Initialize the queue.

        Args:
            loop: Event loop the writes run on.
            send: Coroutine function writing one encoded message.
            on_write: Called on the loop just before each write, so a
                reply can never overtake it.
            on_failed: Called on the loop with the error and the generation
                of the failed write.
        """
        self._loop = loop
        self._send = send
        self._on_write = on_write
        self._on_failed = on_failed
        self._lock = threading.Lock()
        self._entries: deque[OutboundEntry] = deque()
        self._generation = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def generation(self) -> int:
        """Counter bumped on every reset."""
        return self._generation

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def enqueue(self, message: Message) -> OutboundEntry:
        """Append a message and start writing if nothing is in flight.

        Raises:
            ProtocolError: If no ack key can be derived from the message.
        """
        entry = OutboundEntry(message=message, ack_key=ack_key_for(message))
        with self._lock:
            write_in_progress = bool(self._entries)
            self._entries.append(entry)
            generation = self._generation
        if not write_in_progress:
            self._loop.call_soon_threadsafe(self._start_write, generation)
        return entry

    def reset(self) -> int:
        """Drop pending entries and invalidate any write in flight.

        Returns:
            Number of entries dropped.
        """
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self._generation += 1
        if dropped:
            logger.info("Discarded %d unsent messages", dropped)
        return dropped

    def _start_write(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._entries:
                return
            entry = self._entries[0]
            send = self._send
        self._task = self._loop.create_task(self._write(entry, send, generation))

    async def _write(self, entry: OutboundEntry, send: SendFunc, generation: int) -> None:
        logger.debug("Writing message for '%s'", entry.ack_key)
        self._on_write(entry)
        try:
            await send(encode_message(entry.message))
        except OSError as e:
            with self._lock:
                current = generation == self._generation
            if current:
                logger.debug("Write for '%s' failed: %s", entry.ack_key, e)
                self._on_failed(e, generation)
            return

        with self._lock:
            if generation != self._generation:
                return
            self._entries.popleft()
            has_more = bool(self._entries)
        if has_more:
            self._start_write(generation)
