# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

"""
AEAD packet protection.

    uint32    packet_length        (clear, authenticated as associated data)
    byte[n]   encrypted frame body (padding_length, payload, padding)
    byte[16]  tag

The nonce is four zero bytes followed by the 64 bit big-endian sequence
number of the packet in its direction.
"""

import llog

import struct
import logging

from Crypto.Cipher import AES, ChaCha20_Poly1305

import sshwire
from sshexception import SshCryptoError, SshProtocolError

TAG_SIZE = 16
SEQ_LIMIT = 1 << 64

# name: (cipher family, key size).
CIPHERS = {
    "chacha20-poly1305@openssh.com": ("chacha20-poly1305", 32),
    "aes256-gcm@openssh.com": ("aes-gcm", 32),
    "aes128-gcm@openssh.com": ("aes-gcm", 16),
}

log = logging.getLogger(__name__)

def key_size(name):
    try:
        return CIPHERS[name][1]
    except KeyError:
        raise SshCryptoError("Unsupported cipher [{}].".format(name))

def nonce_for(seq):
    if seq < 0 or seq >= SEQ_LIMIT:
        raise SshCryptoError("Sequence number [{}] exhausted.".format(seq))
    return bytes(4) + struct.pack(">Q", seq)

class PacketCipher(object):
    def __init__(self, name, key):
        family, size = CIPHERS.get(name, (None, None))
        if family is None:
            raise SshCryptoError("Unsupported cipher [{}].".format(name))
        if len(key) != size:
            raise SshCryptoError("Cipher [{}] needs a [{}] byte key, got [{}]."\
                .format(name, size, len(key)))

        self.name = name
        self.family = family
        self.key = bytes(key)

    def _new(self, seq):
        nonce = nonce_for(seq)

        if self.family == "chacha20-poly1305":
            return ChaCha20_Poly1305.new(key=self.key, nonce=nonce)

        return AES.new(self.key, AES.MODE_GCM, nonce=nonce,\
            mac_len=TAG_SIZE)

    def encrypt(self, seq, payload):
        frame = sshwire.frame(payload)
        length = bytes(frame[:4])

        c = self._new(seq)
        c.update(length)
        ciphertext, tag = c.encrypt_and_digest(bytes(frame[4:]))

        return length + ciphertext + tag

    def decrypt(self, seq, packet):
        """
        Returns the payload of one complete protected packet. A failed tag
        check raises SshCryptoError and nothing of the plaintext escapes.
        """
        if len(packet) < 4 + TAG_SIZE:
            raise SshProtocolError("Encrypted packet too short [{}]."\
                .format(len(packet)))

        length = bytes(packet[:4])
        packet_length = struct.unpack(">L", length)[0]

        if packet_length > sshwire.MAX_PACKET_LENGTH:
            raise SshProtocolError("Illegal packet_length [{}] received."\
                .format(packet_length))

        if len(packet) != 4 + packet_length + TAG_SIZE:
            raise SshProtocolError("Encrypted packet length mismatch"\
                " (packet_length=[{}], have=[{}]).".format(packet_length,\
                    len(packet)))

        ciphertext = bytes(packet[4:4 + packet_length])
        tag = bytes(packet[4 + packet_length:])

        c = self._new(seq)
        c.update(length)

        try:
            body = c.decrypt_and_verify(ciphertext, tag)
        except ValueError:
            log.warning("Packet authentication failed (seq=[{}])."\
                .format(seq))
            raise SshCryptoError("Packet authentication tag mismatch.")

        return sshwire.parse_body(body)

    def read_from(self, buf, seq):
        "Returns the next payload from PacketBuffer buf, or None."
        packet_length = buf.peek_packet_length()
        if packet_length is None:
            return None

        need = 4 + packet_length + TAG_SIZE
        if len(buf) < need:
            if log.isEnabledFor(logging.DEBUG):
                log.debug("Partial encrypted packet (have=[{}], need=[{}])."\
                    .format(len(buf), need))
            return None

        return self.decrypt(seq, buf.take(need))
