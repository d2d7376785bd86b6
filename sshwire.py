# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

"""
Binary packet framing (RFC 4253 section 6), independent of any cipher state.

    uint32    packet_length
    byte      padding_length
    byte[n1]  payload
    byte[n2]  random padding

packet_length covers everything after itself. Padding is at least four bytes
and brings the whole frame to a multiple of the block size.
"""

import llog

import os
import struct
import logging

from sshexception import SshProtocolError
from mutil import hex_dump

MAX_PACKET_LENGTH = 35000
BLOCK_SIZE = 8
MIN_PADDING = 4
MAX_VERSION_LINE = 255

log = logging.getLogger(__name__)

class PacketBuffer(object):
    "Accumulates raw transport bytes until whole lines or packets are in."

    def __init__(self):
        self.buf = bytearray()

    def __len__(self):
        return len(self.buf)

    def feed(self, data):
        self.buf += data

    def take(self, length):
        assert length <= len(self.buf)
        data = bytes(self.buf[:length])
        del self.buf[:length]
        return data

    def peek(self, length):
        return bytes(self.buf[:length])

    def take_line(self):
        "Returns one CR?LF terminated line without its terminator, or None."
        end = self.buf.find(b"\n")
        if end == -1:
            if len(self.buf) > MAX_VERSION_LINE:
                raise SshProtocolError("Version line too long.")
            return None

        if end > MAX_VERSION_LINE:
            raise SshProtocolError("Version line too long.")

        line = self.take(end + 1)[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]

        return line

    def peek_packet_length(self):
        "Returns the packet_length of the next frame, or None if not yet in."
        if len(self.buf) < 4:
            return None

        packet_length = struct.unpack(">L", self.buf[:4])[0]

        if packet_length > MAX_PACKET_LENGTH:
            errmsg = "Illegal packet_length [{}] received."\
                .format(packet_length)
            log.warning(errmsg)
            raise SshProtocolError(errmsg)

        return packet_length

def padding_length_for(payload_length, block_size=BLOCK_SIZE):
    unpadded = 4 + 1 + payload_length + MIN_PADDING
    return MIN_PADDING + (block_size - unpadded % block_size) % block_size

def frame(payload, block_size=BLOCK_SIZE):
    "Returns the unencrypted frame for payload, random padding included."
    padding = padding_length_for(len(payload), block_size)

    buf = bytearray()
    buf += struct.pack(">L", 1 + len(payload) + padding)
    buf += struct.pack("B", padding)
    buf += payload
    buf += os.urandom(padding)

    return buf

def encode(payload):
    return bytes(frame(payload))

def parse_body(body):
    """
    Returns the payload from a frame body (the bytes after packet_length:
    padding_length, payload and padding).
    """
    if len(body) < 1 + MIN_PADDING:
        raise SshProtocolError(\
            "Packet body of [{}] bytes is too short.".format(len(body)))

    padding_length = body[0]
    if padding_length < MIN_PADDING:
        raise SshProtocolError(\
            "Illegal padding_length [{}].".format(padding_length))

    payload_end = len(body) - padding_length
    if payload_end < 1:
        raise SshProtocolError("Illegal padding_length [{}] for [{}] byte"\
            " packet.".format(padding_length, len(body)))

    return bytes(body[1:payload_end])

def decode(buf):
    """
    Returns the next payload from PacketBuffer buf, or None if more bytes
    are required. Consumed bytes are removed from buf.
    """
    packet_length = buf.peek_packet_length()
    if packet_length is None:
        return None

    if len(buf) < 4 + packet_length:
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Partial packet (have=[{}], need=[{}])."\
                .format(len(buf), 4 + packet_length))
        return None

    data = buf.take(4 + packet_length)

    if log.isEnabledFor(logging.DEBUG):
        log.debug("Received frame [\n{}].".format(hex_dump(data)))

    return parse_body(data[4:])
