"""Core module - Wire protocol, hashing, and shared configuration."""

from dirsync.core.config import ServerConfig, SessionConfig
from dirsync.core.crypto import compute_directory_hash, compute_file_hash, hash_password
from dirsync.core.protocol import (
    DELIMITER,
    ActionType,
    FrameDecoder,
    Message,
    ParseError,
    ProtocolError,
    StatusType,
    decode_message,
    decode_path,
    encode_message,
    encode_path,
)
from dirsync.core.types import FileStatus, NodeInfo

__all__ = [
    # Config
    "ServerConfig",
    "SessionConfig",
    # Crypto
    "compute_directory_hash",
    "compute_file_hash",
    "hash_password",
    # Protocol
    "DELIMITER",
    "ActionType",
    "FrameDecoder",
    "Message",
    "ParseError",
    "ProtocolError",
    "StatusType",
    "decode_message",
    "decode_path",
    "encode_message",
    "encode_path",
    # Types
    "FileStatus",
    "NodeInfo",
]
