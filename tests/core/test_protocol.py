"""Tests for the wire protocol: framing, encoding, path and ack key helpers."""

from __future__ import annotations

import json

import pytest

from dirsync.core.protocol import (
    DELIMITER,
    LOGIN_KEY,
    SYNCH_KEY,
    ActionType,
    FrameDecoder,
    Message,
    ParseError,
    ProtocolError,
    StatusType,
    ack_key_for,
    ack_key_from_reply,
    decode_message,
    decode_path,
    encode_message,
    encode_path,
    erased_message,
    file_message,
    login_message,
    parse_stale_paths,
    synchronize_message,
)


class TestHeaderCodes:
    """Tests for the numeric header tags."""

    def test_action_codes(self) -> None:
        """Client actions should use the server's numbering."""
        assert [int(a) for a in ActionType] == [0, 1, 2, 3, 4]
        assert ActionType.ERASED == 4

    def test_status_codes(self) -> None:
        """Server statuses should use the server's numbering."""
        assert StatusType(0) is StatusType.COMPLETED
        assert StatusType(5) is StatusType.SERVICE_UNAVAILABLE
        assert StatusType(6) is StatusType.WRONG_ACTION


class TestEncodeMessage:
    """Tests for message serialization."""

    def test_ends_with_delimiter(self) -> None:
        """Every encoded message should end with the frame delimiter."""
        data = encode_message(login_message("alice", "digest"))
        assert data.endswith(DELIMITER)

    def test_delimiter_only_at_end_with_nested_payload(self) -> None:
        """Nested objects must not produce an early delimiter."""
        message = Message(ActionType.SYNCHRONIZE, {"a": "1", "b": "2"})
        data = encode_message(message)
        assert data.count(DELIMITER) == 1

    def test_delimiter_inside_string_is_escaped(self) -> None:
        """A payload string containing the delimiter text stays one frame."""
        message = Message(StatusType.COMPLETED, "weird\n}\nname done")
        data = encode_message(message)
        assert data.count(DELIMITER) == 1

    def test_document_shape(self) -> None:
        """The document should carry header and data fields."""
        data = encode_message(erased_message("docs/a:txt"))
        document = json.loads(data)
        assert document == {"header": 4, "data": {"path": "docs/a:txt"}}

    def test_roundtrip(self) -> None:
        """Decoding an encoded message should give it back."""
        message = file_message(ActionType.CREATED, "a:txt", "abc", True, "aGk=")
        assert decode_message(encode_message(message)) == message

    def test_roundtrip_empty_payload(self) -> None:
        """A message without payload should survive encoding."""
        message = Message(StatusType.NO_NEED)
        decoded = decode_message(encode_message(message))
        assert decoded.payload is None
        assert decoded.text == ""


class TestDecodeMessage:
    """Tests for message parsing."""

    def test_invalid_json(self) -> None:
        """Garbage should raise ParseError."""
        with pytest.raises(ParseError):
            decode_message(b"not json\n}\n")

    def test_invalid_utf8(self) -> None:
        """Undecodable bytes should raise ParseError."""
        with pytest.raises(ParseError):
            decode_message(b"\xff\xfe\n}\n")

    def test_not_an_object(self) -> None:
        """A JSON array is not a message."""
        with pytest.raises(ParseError):
            decode_message(b"[1, 2]")

    def test_missing_header(self) -> None:
        """A message without header should be rejected."""
        with pytest.raises(ParseError):
            decode_message(b'{"data": "x"}')

    def test_boolean_header_rejected(self) -> None:
        """true is not a valid header even though bool is an int."""
        with pytest.raises(ParseError):
            decode_message(b'{"header": true, "data": "x"}')

    def test_invalid_payload_type(self) -> None:
        """Numeric payloads are not part of the protocol."""
        with pytest.raises(ParseError):
            decode_message(b'{"header": 0, "data": 12}')

    def test_parse_error_is_protocol_error(self) -> None:
        """ParseError should be catchable as ProtocolError."""
        assert issubclass(ParseError, ProtocolError)

    def test_text_of_object_payload_raises(self) -> None:
        """Reading a structured payload as text is a protocol error."""
        message = Message(StatusType.IN_NEED, {"a": 1})
        with pytest.raises(ProtocolError):
            _ = message.text


class TestFrameDecoder:
    """Tests for delimiter framing over a byte stream."""

    def test_single_frame(self) -> None:
        """One complete message yields one frame."""
        decoder = FrameDecoder()
        data = encode_message(Message(StatusType.AUTHORIZED, "ok"))
        assert decoder.feed(data) == [data]
        assert decoder.buffered == 0

    def test_back_to_back_frames(self) -> None:
        """Two messages received in one read are both returned."""
        decoder = FrameDecoder()
        first = encode_message(Message(StatusType.AUTHORIZED, "ok"))
        second = encode_message(Message(StatusType.NO_NEED, ""))
        frames = decoder.feed(first + second)
        assert frames == [first, second]

    def test_partial_frame_is_buffered(self) -> None:
        """A message split across reads is returned once complete."""
        decoder = FrameDecoder()
        data = encode_message(Message(StatusType.COMPLETED, "a:txt done"))
        assert decoder.feed(data[:10]) == []
        assert decoder.buffered == 10
        assert decoder.feed(data[10:]) == [data]
        assert decoder.buffered == 0

    def test_split_inside_delimiter(self) -> None:
        """A read boundary inside the delimiter should not lose the frame."""
        decoder = FrameDecoder()
        data = encode_message(Message(StatusType.COMPLETED, "x done"))
        assert decoder.feed(data[:-2]) == []
        assert decoder.feed(data[-2:]) == [data]

    def test_trailing_partial_kept(self) -> None:
        """Bytes after the last delimiter stay buffered."""
        decoder = FrameDecoder()
        first = encode_message(Message(StatusType.AUTHORIZED, "ok"))
        second = encode_message(Message(StatusType.NO_NEED, ""))
        assert decoder.feed(first + second[:5]) == [first]
        assert decoder.buffered == 5

    def test_clear(self) -> None:
        """Clear should drop a partial frame."""
        decoder = FrameDecoder()
        decoder.feed(b'{"header"')
        decoder.clear()
        assert decoder.buffered == 0


class TestPaths:
    """Tests for the outbound path transform."""

    def test_encode_replaces_dots(self) -> None:
        """Dots should become colons."""
        assert encode_path("dir/file.tar.gz") == "dir/file:tar:gz"

    def test_decode_restores_dots(self) -> None:
        """Colons should become dots."""
        assert decode_path("dir/file:tar:gz") == "dir/file.tar.gz"

    @pytest.mark.parametrize("path", ["a.txt", ".hidden", "no_dots", "x/y.z/w.q"])
    def test_decode_inverts_encode(self, path: str) -> None:
        """Decoding an encoded path should give the original."""
        assert decode_path(encode_path(path)) == path

    def test_parse_stale_paths(self) -> None:
        """The in_need list should be split and decoded."""
        assert parse_stale_paths("a:txt||dir||dir/b:md||") == ["a.txt", "dir", "dir/b.md"]

    def test_parse_stale_paths_empty(self) -> None:
        """An empty list yields no paths."""
        assert parse_stale_paths("") == []


class TestAckKeys:
    """Tests for acknowledgement key derivation."""

    def test_login_key(self) -> None:
        """Login messages use the login key."""
        assert ack_key_for(login_message("bob", "d")) == LOGIN_KEY

    def test_synch_key(self) -> None:
        """Synchronize messages use the synch key."""
        assert ack_key_for(synchronize_message({})) == SYNCH_KEY

    def test_file_key_is_encoded_path(self) -> None:
        """File messages use their encoded path."""
        message = file_message(ActionType.MODIFIED, "a:txt", "h", True, "")
        assert ack_key_for(message) == "a:txt"
        assert ack_key_for(erased_message("dir")) == "dir"

    def test_file_message_without_path(self) -> None:
        """A file message lacking a path has no ack key."""
        with pytest.raises(ProtocolError):
            ack_key_for(Message(ActionType.CREATED, {"hash": "h"}))

    def test_reply_key(self) -> None:
        """The key is everything before the last space."""
        assert ack_key_from_reply("docs/a:txt created") == "docs/a:txt"
        assert ack_key_from_reply("my dir/a:txt erased") == "my dir/a:txt"

    def test_reply_without_space(self) -> None:
        """A reply without free text is the key itself."""
        assert ack_key_from_reply("login") == "login"


class TestBuilders:
    """Tests for message builders."""

    def test_login_payload(self) -> None:
        """Login carries username and password digest."""
        message = login_message("alice", "abc123")
        assert message.header == ActionType.LOGIN
        assert message.payload == {"username": "alice", "password": "abc123"}

    def test_synchronize_copies_map(self) -> None:
        """The synchronize payload should not alias the caller's map."""
        hashes = {"a:txt": "h1"}
        message = synchronize_message(hashes)
        hashes["b"] = "h2"
        assert message.payload == {"a:txt": "h1"}

    def test_file_message_fields(self) -> None:
        """Created/modified carry path, hash, isFile and content."""
        message = file_message(ActionType.CREATED, "dir", "h", False, "")
        assert message.payload == {"path": "dir", "hash": "h", "isFile": False, "content": ""}

    def test_file_message_rejects_other_actions(self) -> None:
        """Only created and modified carry content."""
        with pytest.raises(ValueError):
            file_message(ActionType.ERASED, "a", "h", True, "")
