# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

"""
Key exchange primitives shared by every exchange method: algorithm
negotiation, the exchange hash and key derivation (RFC 4253 sections 7 and 8).
"""

import llog

import logging
from hashlib import sha256

import sshtype
from curve25519 import generate_ephemeral, compute_shared
from sshexception import SshKexError

KEX_ALGORITHMS = ["curve25519-sha256", "curve25519-sha256@libssh.org"]
SERVER_HOST_KEY_ALGORITHMS = ["ssh-ed25519", "rsa-sha2-256", "rsa-sha2-512"]
ENCRYPTION_ALGORITHMS = ["chacha20-poly1305@openssh.com",\
    "aes256-gcm@openssh.com", "aes128-gcm@openssh.com"]
MAC_ALGORITHMS = ["hmac-sha2-256", "hmac-sha2-512"]
COMPRESSION_ALGORITHMS = ["none"]

IV_SIZE = 12
INTEGRITY_KEY_SIZE = 32

log = logging.getLogger(__name__)

class KeySet(object):
    "Keys derived from one exchange; immutable until the next re-key."

    def __init__(self, iv_c2s, iv_s2c, key_c2s, key_s2c, integrity_c2s,\
            integrity_s2c):
        self.iv_c2s = iv_c2s
        self.iv_s2c = iv_s2c
        self.key_c2s = key_c2s
        self.key_s2c = key_s2c
        self.integrity_c2s = integrity_c2s
        self.integrity_s2c = integrity_s2c

    def as_tuple(self):
        return (self.iv_c2s, self.iv_s2c, self.key_c2s, self.key_s2c,\
            self.integrity_c2s, self.integrity_s2c)

    def __eq__(self, other):
        if not isinstance(other, KeySet):
            return NotImplemented
        return self.as_tuple() == other.as_tuple()

    def __hash__(self):
        return hash(self.as_tuple())

class Negotiated(object):
    def __init__(self, kex_algorithm, host_key_algorithm, cipher_c2s,\
            cipher_s2c):
        self.kex_algorithm = kex_algorithm
        self.host_key_algorithm = host_key_algorithm
        self.cipher_c2s = cipher_c2s
        self.cipher_s2c = cipher_s2c

def choose(what, client_algorithms, server_algorithms):
    "The first client algorithm that the server also supports wins."
    for name in client_algorithms:
        if name in server_algorithms:
            return name

    raise SshKexError("No matching {} algorithm (client=[{}], server=[{}])."\
        .format(what, ",".join(client_algorithms),\
            ",".join(server_algorithms)))

def split_names(val):
    if not val:
        return []
    return val.split(",")

def negotiate(local, remote):
    "local and remote are the client and server SshKexInitMessage objects."
    kex_algorithm = choose("kex", split_names(local.kex_algorithms),\
        split_names(remote.kex_algorithms))
    host_key_algorithm = choose("host key",\
        split_names(local.server_host_key_algorithms),\
        split_names(remote.server_host_key_algorithms))
    cipher_c2s = choose("client to server cipher",\
        split_names(local.encryption_algorithms_client_to_server),\
        split_names(remote.encryption_algorithms_client_to_server))
    cipher_s2c = choose("server to client cipher",\
        split_names(local.encryption_algorithms_server_to_client),\
        split_names(remote.encryption_algorithms_server_to_client))
    choose("client to server compression",\
        split_names(local.compression_algorithms_client_to_server),\
        split_names(remote.compression_algorithms_client_to_server))
    choose("server to client compression",\
        split_names(local.compression_algorithms_server_to_client),\
        split_names(remote.compression_algorithms_server_to_client))

    return Negotiated(kex_algorithm, host_key_algorithm, cipher_c2s,\
        cipher_s2c)

def compute_exchange_hash(v_c, v_s, i_c, i_s, host_key_blob, q_c, q_s, k):
    "H = SHA256(V_C || V_S || I_C || I_S || K_S || Q_C || Q_S || K)."
    hm = bytearray()
    hm += sshtype.encode_string(v_c)
    hm += sshtype.encode_string(v_s)
    hm += sshtype.encode_binary(i_c)
    hm += sshtype.encode_binary(i_s)
    hm += sshtype.encode_binary(host_key_blob)
    hm += sshtype.encode_binary(q_c)
    hm += sshtype.encode_binary(q_s)
    hm += sshtype.encode_mpint(k)

    return sha256(hm).digest()

def derive_key(k, h, letter, session_id, needed_bytes):
    assert isinstance(letter, bytes) and len(letter) == 1

    kbuf = sshtype.encode_mpint(k)

    buf = bytearray()
    buf += kbuf
    buf += h
    buf += letter
    buf += session_id

    r = sha256(buf).digest()

    while len(r) < needed_bytes:
        buf.clear()
        buf += kbuf
        buf += h
        buf += r

        r += sha256(buf).digest()

    return r[:needed_bytes]

def derive(k, h, session_id, key_size_c2s=32, key_size_s2c=32):
    """
    Derives the six outputs 'A'..'F' into a KeySet. On a re-key session_id
    must be the H of the connection's first exchange.
    """
    return KeySet(\
        derive_key(k, h, b'A', session_id, IV_SIZE),
        derive_key(k, h, b'B', session_id, IV_SIZE),
        derive_key(k, h, b'C', session_id, key_size_c2s),
        derive_key(k, h, b'D', session_id, key_size_s2c),
        derive_key(k, h, b'E', session_id, INTEGRITY_KEY_SIZE),
        derive_key(k, h, b'F', session_id, INTEGRITY_KEY_SIZE))

class KexContext(object):
    """
    Ephemeral state of one exchange. Only session_id outlives it, and it is
    kept by the connection rather than here.
    """

    def __init__(self, local_kex_init, remote_kex_init):
        self.local_kex_init = local_kex_init
        self.remote_kex_init = remote_kex_init
        self.private_key, self.public_key = generate_ephemeral()
        self.k = None
        self.h = None

    def compute_k(self, peer_public_key):
        "Returns K as an integer, the form in which SSH hashes it."
        secret = compute_shared(self.private_key, peer_public_key)
        self.k = int.from_bytes(secret, "big")
        return self.k

    def compute_h(self, v_c, v_s, host_key_blob, peer_public_key):
        self.h = compute_exchange_hash(v_c, v_s, self.local_kex_init,\
            self.remote_kex_init, host_key_blob, self.public_key,\
            peer_public_key, self.k)
        return self.h
