"""Tests for login credentials and the console prompt."""

from unittest.mock import patch

import click
import pytest

from dirsync.client.credentials import Credentials, prompt_credentials
from dirsync.core.crypto import hash_password


class TestCredentials:
    """Tests for Credentials."""

    def test_from_password_keeps_only_digest(self) -> None:
        """The cleartext password should not be stored."""
        credentials = Credentials.from_password(" alice ", "secret")
        assert credentials.username == "alice"
        assert credentials.password_digest == hash_password("secret")
        assert "secret" not in repr(credentials)

    def test_empty_username_rejected(self) -> None:
        """A blank username is invalid."""
        with pytest.raises(ValueError):
            Credentials.from_password("  ", "secret")

    def test_empty_digest_rejected(self) -> None:
        """A missing digest is invalid."""
        with pytest.raises(ValueError):
            Credentials(username="bob", password_digest="")


class TestPromptCredentials:
    """Tests for prompt_credentials."""

    def test_prompts_username_and_password(self) -> None:
        """Both values should be asked for, the password hidden."""
        with patch("dirsync.client.credentials.click.prompt", side_effect=["alice", "pw"]) as prompt:
            credentials = prompt_credentials()

        assert credentials == Credentials.from_password("alice", "pw")
        assert prompt.call_args_list[0].args == ("Insert username",)
        assert prompt.call_args_list[1].kwargs["hide_input"] is True

    def test_blank_username_is_asked_again(self) -> None:
        """An empty username should be asked for again."""
        with patch("dirsync.client.credentials.click.prompt", side_effect=["  ", "bob", "pw"]):
            credentials = prompt_credentials()
        assert credentials.username == "bob"

    def test_closed_input_aborts(self) -> None:
        """Closed input should propagate as click.Abort."""
        with patch("dirsync.client.credentials.click.prompt", side_effect=click.Abort()):
            with pytest.raises(click.Abort):
                prompt_credentials()
