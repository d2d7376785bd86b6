"""Tests for plain packet framing."""

import struct

import pytest

import sshwire
from sshexception import SshProtocolError

def _buffer(data):
    buf = sshwire.PacketBuffer()
    buf.feed(data)
    return buf

class TestFraming:
    """Encoding and decoding of unencrypted frames."""

    @pytest.mark.parametrize("length", [0, 1, 3, 4, 11, 12, 255, 32000])
    def test_round_trip(self, length):
        """Test that decode returns exactly what was encoded."""
        payload = bytes(range(256)) * (length // 256) + bytes(length % 256)
        frame = sshwire.encode(payload)

        assert len(frame) % sshwire.BLOCK_SIZE == 0
        assert sshwire.decode(_buffer(frame)) == payload

    def test_minimum_padding(self):
        """Test that padding is never below four bytes."""
        for length in range(0, 64):
            frame = sshwire.encode(b"x" * length)
            assert frame[4] >= sshwire.MIN_PADDING

    def test_padding_is_random(self):
        """Test that two frames of the same payload differ in padding."""
        payload = b"\x02" + b"a" * 40
        frames = set(sshwire.encode(payload) for _ in range(8))
        assert len(frames) > 1

    def test_partial_packet(self):
        """Test that a frame split in two decodes only once complete."""
        frame = sshwire.encode(b"\x05hello")
        buf = _buffer(frame[:7])

        assert sshwire.decode(buf) is None

        buf.feed(frame[7:])
        assert sshwire.decode(buf) == b"\x05hello"
        assert len(buf) == 0

    def test_length_prefix_split(self):
        """Test that fewer than four bytes is simply incomplete."""
        assert sshwire.decode(_buffer(b"\x00\x00")) is None

    def test_two_packets_in_one_read(self):
        """Test that consecutive frames decode in order."""
        buf = _buffer(sshwire.encode(b"\x01one") + sshwire.encode(b"\x02two"))

        assert sshwire.decode(buf) == b"\x01one"
        assert sshwire.decode(buf) == b"\x02two"
        assert sshwire.decode(buf) is None

    def test_oversize_packet(self):
        """Test that a length above the limit is rejected early."""
        buf = _buffer(struct.pack(">L", sshwire.MAX_PACKET_LENGTH + 1))
        with pytest.raises(SshProtocolError):
            sshwire.decode(buf)

    def test_short_padding_rejected(self):
        """Test that a padding_length below four is a protocol error."""
        body = b"\x03" + b"\x05abcd" + b"\x00" * 3
        with pytest.raises(SshProtocolError):
            sshwire.parse_body(body)

    def test_padding_longer_than_packet(self):
        """Test that padding covering the whole packet is rejected."""
        body = b"\x10" + b"\x00" * 8
        with pytest.raises(SshProtocolError):
            sshwire.parse_body(body)

class TestVersionLines:
    """Line splitting used for the version exchange."""

    def test_crlf_and_lf(self):
        """Test that both terminators are accepted and stripped."""
        buf = _buffer(b"SSH-2.0-a\r\nSSH-2.0-b\n")

        assert buf.take_line() == b"SSH-2.0-a"
        assert buf.take_line() == b"SSH-2.0-b"
        assert buf.take_line() is None

    def test_line_followed_by_packet(self):
        """Test that bytes after the line stay buffered."""
        frame = sshwire.encode(b"\x14kexinit")
        buf = _buffer(b"SSH-2.0-x\r\n" + frame)

        assert buf.take_line() == b"SSH-2.0-x"
        assert sshwire.decode(buf) == b"\x14kexinit"

    def test_line_too_long(self):
        """Test that an unterminated overlong line is rejected."""
        buf = _buffer(b"S" * (sshwire.MAX_VERSION_LINE + 1))
        with pytest.raises(SshProtocolError):
            buf.take_line()
