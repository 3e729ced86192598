"""Login credentials for the sync session.

This module provides:
- Credentials: Username and password digest used by the login message
- prompt_credentials: Interactive console source (click prompts)

The password is hashed as soon as it is read; only the digest is kept in
memory and sent to the server.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import click

from dirsync.core.crypto import hash_password


@dataclass(frozen=True)
class Credentials:
    """Login identity.

    Attributes:
        username: Account name.
        password_digest: Hex SHA-256 digest of the password.
    """

    username: str
    password_digest: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.username:
            raise ValueError("Username cannot be empty")
        if not self.password_digest:
            raise ValueError("Password digest cannot be empty")

    @classmethod
    def from_password(cls, username: str, password: str) -> Credentials:
        """Build credentials from a cleartext password.

        Args:
            username: Account name.
            password: Cleartext password; only its digest is retained.
        """
        return cls(username=username.strip(), password_digest=hash_password(password))


def prompt_credentials() -> Credentials:
    """Ask the user for username and password on the console.

    Blocks until both values are entered.

    Raises:
        click.Abort: If input is closed or interrupted.
    """
    while True:
        username = click.prompt("Insert username", type=str).strip()
        if username:
            break
    password = click.prompt("Insert password", hide_input=True, type=str)
    return Credentials.from_password(username, password)
