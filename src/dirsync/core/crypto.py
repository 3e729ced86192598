"""Hashing helpers for dirsync.

This module provides:
- File hashing with SHA-256
- One-way password digests for the login message
"""

import hashlib
from pathlib import Path


def compute_file_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Reads the file in chunks to handle large files efficiently.

    Args:
        path: Path to the file to hash.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(8192), b""):
            hasher.update(block)
    return hasher.hexdigest()


def compute_directory_hash(relative_path: str) -> str:
    """Hash identifying a directory entry (directories carry no content)."""
    return hashlib.sha256(relative_path.encode("utf-8")).hexdigest()


def hash_password(password: str) -> str:
    """Digest a password before it is stored or sent.

    Args:
        password: Cleartext password as typed by the user.

    Returns:
        Hexadecimal SHA-256 digest.
    """
    return hashlib.sha256(password.encode("utf-8")).hexdigest()
