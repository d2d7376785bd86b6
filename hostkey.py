# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

"""
Public keys and the host key trust policy.
"""

import llog

import base64
import logging
from hashlib import sha256

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from Crypto.Hash import SHA256, SHA512
from Crypto.PublicKey import RSA
from Crypto.Signature import pkcs1_15

import sshtype
from sshexception import SshException, SshHostKeyError

ED25519 = "ssh-ed25519"
SSH_RSA = "ssh-rsa"
RSA_SHA2_256 = "rsa-sha2-256"
RSA_SHA2_512 = "rsa-sha2-512"

log = logging.getLogger(__name__)

def fingerprint(blob):
    "OpenSSH style SHA256 fingerprint of a public key blob."
    digest = base64.b64encode(sha256(blob).digest()).decode("ascii")
    return "SHA256:" + digest.rstrip("=")

class Ed25519Key(object):
    """
    An ssh-ed25519 key. Holds the private half when it can sign (user auth,
    or a host key for a test peer).
    """

    def __init__(self, data=None, private_key=None):
        self.__private_key = private_key
        self.__public_key_bytes = None

        if private_key is not None:
            self.public_key = private_key.public_key()
        elif data is not None:
            r = sshtype.SshReader(data)
            if r.read_string() != ED25519:
                raise SshException("Invalid ssh-ed25519 key.")
            raw = r.read_binary()
            if len(raw) != 32:
                raise SshException("Invalid ssh-ed25519 key length [{}]."\
                    .format(len(raw)))
            self.public_key = Ed25519PublicKey.from_public_bytes(raw)
        else:
            raise SshException("Key object may not be empty")

    @classmethod
    def generate(cls):
        return cls(private_key=Ed25519PrivateKey.generate())

    @classmethod
    def from_private_key_file(cls, filename, password=None):
        with open(filename, "rb") as f:
            data = f.read()

        if password is not None and isinstance(password, str):
            password = password.encode("UTF-8")

        key = serialization.load_ssh_private_key(data, password)
        if not isinstance(key, Ed25519PrivateKey):
            raise SshException("Key file [{}] is not an ssh-ed25519 key."\
                .format(filename))

        return cls(private_key=key)

    def get_name(self):
        return ED25519

    def can_sign(self):
        return self.__private_key is not None

    def raw_public_key(self):
        return self.public_key.public_bytes(serialization.Encoding.Raw,\
            serialization.PublicFormat.Raw)

    def asbytes(self):
        m = self.__public_key_bytes

        if m:
            return m

        m = bytearray()
        sshtype.encode_string_onto(m, ED25519)
        sshtype.encode_binary_onto(m, self.raw_public_key())

        m = self.__public_key_bytes = bytes(m)

        return m

    def sign_ssh_data(self, data, output=None):
        sig = self.__private_key.sign(bytes(data))

        if not output:
            output = bytearray()
        sshtype.encode_string_onto(output, ED25519)
        sshtype.encode_binary_onto(output, sig)

        return output

    def verify_ssh_sig(self, data, sig_msg):
        r = sshtype.SshReader(sig_msg)
        if r.read_string() != ED25519:
            log.warning("Not an ssh-ed25519 signature!")
            return False

        try:
            self.public_key.verify(r.read_binary(), bytes(data))
        except InvalidSignature:
            return False

        return True

class RsaKey(object):
    "Verify-only RSA public key for the rsa-sha2-* signature algorithms."

    def __init__(self, data):
        r = sshtype.SshReader(data)
        if r.read_string() != SSH_RSA:
            raise SshException("Invalid key")
        self.e = r.read_mpint()
        self.n = r.read_mpint()

        self._blob = bytes(data)
        self.__public_key = None

    def get_name(self):
        return SSH_RSA

    def asbytes(self):
        return self._blob

    def _public_key(self):
        key = self.__public_key

        if not key:
            self.__public_key = key = RSA.construct((self.n, self.e))

        return key

    def verify_ssh_sig(self, data, sig_msg):
        r = sshtype.SshReader(sig_msg)
        algorithm = r.read_string()

        if algorithm == RSA_SHA2_256:
            h = SHA256.new(bytes(data))
        elif algorithm == RSA_SHA2_512:
            h = SHA512.new(bytes(data))
        else:
            log.warning("Unsupported RSA signature algorithm [{}]."\
                .format(algorithm))
            return False

        try:
            pkcs1_15.new(self._public_key()).verify(h, r.read_binary())
        except ValueError:
            return False

        return True

def parse_public_key(blob):
    "Returns a key object for an SSH public key blob."
    key_type = sshtype.SshReader(blob).read_string()

    if key_type == ED25519:
        return Ed25519Key(blob)
    if key_type == SSH_RSA:
        return RsaKey(blob)

    raise SshException("Unsupported host key type [{}].".format(key_type))

def parse_public_key_line(line):
    "Returns the blob of an OpenSSH 'type base64 [comment]' line."
    parts = line.strip().split()
    if len(parts) < 2:
        raise SshException("Invalid public key line [{}].".format(line))

    try:
        blob = base64.b64decode(parts[1], validate=True)
    except ValueError as e:
        raise SshException("Invalid public key encoding: {}.".format(e))

    key_type = sshtype.SshReader(blob).read_string()
    if key_type != parts[0]:
        raise SshException("Public key line type [{}] does not match key"\
            " type [{}].".format(parts[0], key_type))

    return blob

class HostKeyPolicy(object):
    """
    Checks the server's signature over the exchange hash, then whether the
    key itself is trusted. With no known_keys any correctly signing key is
    accepted, with a warning carrying its fingerprint.
    """

    def __init__(self, known_keys=None):
        self.known_keys = None
        if known_keys is not None:
            self.known_keys = set(bytes(k) for k in known_keys)

    def verify(self, host_key, signature, h, algorithm=None):
        "algorithm, when given, is the negotiated host key algorithm."
        try:
            key = parse_public_key(host_key)
            if algorithm is not None:
                signed_with = sshtype.SshReader(signature).read_string()
                if signed_with != algorithm:
                    raise SshException("Signature algorithm [{}] is not the"\
                        " negotiated [{}].".format(signed_with, algorithm))
            valid = key.verify_ssh_sig(h, signature)
        except SshException as e:
            raise SshHostKeyError("Unusable host key: {}.".format(e))

        if not valid:
            raise SshHostKeyError("Host key signature verification failed.")

        fp = fingerprint(host_key)

        if self.known_keys is None:
            log.warning("Accepting unpinned host key [{}] {}."\
                .format(key.get_name(), fp))
            return key

        if bytes(host_key) not in self.known_keys:
            raise SshHostKeyError("Host key {} is not a known key."\
                .format(fp))

        if log.isEnabledFor(logging.INFO):
            log.info("Host key {} matches a known key.".format(fp))

        return key

class AcceptAnyHostKeyPolicy(object):
    "Trusts every host key without checking anything. Test use only."

    def verify(self, host_key, signature, h, algorithm=None):
        log.warning("HOST KEY NOT VERIFIED: accepting [{}] unchecked."\
            .format(fingerprint(host_key)))
        return None
