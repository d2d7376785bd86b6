# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

import llog

import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)

from sshexception import SshKexError

KEY_SIZE = 32

log = logging.getLogger(__name__)

def generate_ephemeral():
    "Returns a fresh (private, public) X25519 pair as raw 32 byte strings."
    key = X25519PrivateKey.generate()

    priv = key.private_bytes(serialization.Encoding.Raw,\
        serialization.PrivateFormat.Raw, serialization.NoEncryption())
    pub = key.public_key().public_bytes(serialization.Encoding.Raw,\
        serialization.PublicFormat.Raw)

    return priv, pub

def public_from_private(priv):
    key = X25519PrivateKey.from_private_bytes(priv)
    return key.public_key().public_bytes(serialization.Encoding.Raw,\
        serialization.PublicFormat.Raw)

def compute_shared(priv, peer_pub):
    "Returns the raw 32 byte X25519 shared secret."
    if len(peer_pub) != KEY_SIZE:
        raise SshKexError("Peer ephemeral key is [{}] bytes, expected [{}]."\
            .format(len(peer_pub), KEY_SIZE))

    key = X25519PrivateKey.from_private_bytes(priv)

    try:
        secret = key.exchange(X25519PublicKey.from_public_bytes(peer_pub))
    except ValueError as e:
        # Raised for low order points (all zero result).
        raise SshKexError("X25519 key agreement failed: {}.".format(e))

    if secret == bytes(KEY_SIZE):
        raise SshKexError("X25519 shared secret is all zero.")

    return secret
