"""Tests for shared configuration classes."""

import pytest

from dirsync.core.config import ServerConfig, SessionConfig


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_address(self) -> None:
        """Address should join host and port."""
        config = ServerConfig(host="sync.example.com", port=9000)
        assert config.address == "sync.example.com:9000"

    def test_host_is_stripped(self) -> None:
        """Surrounding whitespace should be removed from the host."""
        assert ServerConfig(host="  localhost ", port=1).host == "localhost"

    def test_port_string_is_coerced(self) -> None:
        """A port read from JSON as a string should become an int."""
        assert ServerConfig(host="h", port="8080").port == 8080  # type: ignore[arg-type]

    def test_empty_host_rejected(self) -> None:
        """An empty host should be rejected."""
        with pytest.raises(ValueError, match="host"):
            ServerConfig(host="  ", port=9000)

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_invalid_port_rejected(self, port: int) -> None:
        """Ports outside 1-65535 should be rejected."""
        with pytest.raises(ValueError, match="port"):
            ServerConfig(host="localhost", port=port)

    def test_default_connect_timeout(self) -> None:
        """Connect timeout should default to 10 seconds."""
        assert ServerConfig(host="h", port=1).connect_timeout == 10.0


class TestSessionConfig:
    """Tests for SessionConfig defaults."""

    def test_defaults(self) -> None:
        """Defaults should match the server's expectations."""
        config = SessionConfig()
        assert config.ack_timeout == 600.0
        assert config.base_delay == 5.0
        assert config.max_delay == 20.0
        assert config.storm_threshold == 1000
        assert config.storm_window == 1.0
