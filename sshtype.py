# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

import llog

import struct
import logging

from sshexception import SshProtocolError

log = logging.getLogger(__name__)

def encode_mpint(val):
    "Sign-safe, big-endian two's complement; zero is the empty string."
    if val == 0:
        return struct.pack(">L", 0)

    length = ((val + (val < 0)).bit_length() + 8) // 8
    buf = val.to_bytes(length, "big", signed=True)

    return struct.pack(">L", len(buf)) + buf

def decode_mpint(buf):
    return int.from_bytes(buf, "big", signed=True)

def encode_string(val):
    if isinstance(val, str):
        val = val.encode(encoding="UTF-8")

    return struct.pack(">L", len(val)) + val

def encode_binary(buf):
    return struct.pack(">L", len(buf)) + buf

def encode_name_list(val):
    if not isinstance(val, str):
        val = ",".join(val)
    return encode_string(val)

def encode_uint32(val):
    return struct.pack(">L", val)

def encode_boolean(val):
    return struct.pack("?", bool(val))

def encode_string_onto(buf, val):
    buf += encode_string(val)
    return buf

def encode_binary_onto(buf, val):
    buf += encode_binary(val)
    return buf

def encode_name_list_onto(buf, val):
    buf += encode_name_list(val)
    return buf

def encode_mpint_onto(buf, val):
    buf += encode_mpint(val)
    return buf

def encode_uint32_onto(buf, val):
    buf += struct.pack(">L", val)
    return buf

def encode_boolean_onto(buf, val):
    buf += encode_boolean(val)
    return buf

class SshReader(object):
    """
    Cursor over an SSH payload.

    Every read validates that enough bytes remain before slicing; a short
    buffer is reported as an SshProtocolError instead of silently returning
    a truncated value.
    """

    def __init__(self, buf, offset=0):
        self.buf = buf
        self.i = offset

    @property
    def remaining(self):
        return len(self.buf) - self.i

    def at_end(self):
        return self.i >= len(self.buf)

    def _take(self, length, what):
        end = self.i + length
        if end > len(self.buf):
            errmsg = "Truncated {}: need [{}] bytes at offset [{}] but only"\
                " [{}] remain.".format(what, length, self.i, self.remaining)
            if log.isEnabledFor(logging.DEBUG):
                log.debug(errmsg)
            raise SshProtocolError(errmsg)

        value = self.buf[self.i:end]
        self.i = end
        return value

    def read_byte(self):
        return self._take(1, "byte")[0]

    def read_boolean(self):
        return self._take(1, "boolean")[0] != 0

    def read_uint32(self):
        return struct.unpack(">L", self._take(4, "uint32"))[0]

    def read_bytes(self, length):
        return bytes(self._take(length, "bytes"))

    def read_binary(self):
        length = self.read_uint32()
        return bytes(self._take(length, "string"))

    def read_string(self):
        value = self.read_binary()
        try:
            return value.decode("UTF-8")
        except UnicodeDecodeError as e:
            raise SshProtocolError("Invalid UTF-8 string: {}.".format(e))

    def read_name_list(self):
        value = self.read_string()
        if not value:
            return []
        return value.split(",")

    def read_mpint(self):
        return decode_mpint(self.read_binary())

    def read_rest(self):
        value = bytes(self.buf[self.i:])
        self.i = len(self.buf)
        return value
