"""Shared configuration classes for dirsync.

This module defines the connection and session tuning parameters used by
the session engine and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ServerConfig:
    """Configuration for connecting to a dirsync server.

    Attributes:
        host: Server host name or address.
        port: Server TCP port.
        connect_timeout: Seconds allowed for establishing the connection.
    """

    host: str
    port: int
    connect_timeout: float = 10.0

    def __post_init__(self) -> None:
        """Normalize and validate the address."""
        self.host = self.host.strip()
        if not self.host:
            raise ValueError("Server host cannot be empty")
        self.port = int(self.port)
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid server port: {self.port}")

    @property
    def address(self) -> str:
        """Get the address as host:port."""
        return f"{self.host}:{self.port}"


@dataclass
class SessionConfig:
    """Tuning parameters of a sync session.

    Attributes:
        ack_timeout: Seconds to wait for a reply before logging a timeout.
        base_delay: Initial reconnection backoff in seconds.
        max_delay: Backoff at which automatic retrying stops.
        storm_threshold: Reconnects tolerated within one storm window.
        storm_window: Storm detection window in seconds.
        read_chunk_size: Bytes requested per socket read.
    """

    ack_timeout: float = 600.0
    base_delay: float = 5.0
    max_delay: float = 20.0
    storm_threshold: int = 1000
    storm_window: float = 1.0
    read_chunk_size: int = 65536
