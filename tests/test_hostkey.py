"""Tests for host key parsing and the trust policies."""

import base64

import pytest
from Crypto.Hash import SHA256
from Crypto.PublicKey import RSA
from Crypto.Signature import pkcs1_15
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
)

import sshtype
import hostkey
from sshexception import SshException, SshHostKeyError

H = bytes(range(32))

@pytest.fixture(scope="module")
def rsa_key():
    return RSA.generate(2048)

def _rsa_blob(key):
    blob = bytearray()
    sshtype.encode_string_onto(blob, "ssh-rsa")
    sshtype.encode_mpint_onto(blob, key.e)
    sshtype.encode_mpint_onto(blob, key.n)
    return bytes(blob)

def _rsa_sig(key, data, algorithm="rsa-sha2-256"):
    sig = bytearray()
    sshtype.encode_string_onto(sig, algorithm)
    sshtype.encode_binary_onto(sig, pkcs1_15.new(key).sign(SHA256.new(data)))
    return bytes(sig)

class TestEd25519Key:
    """ssh-ed25519 blobs and signatures."""

    def test_sign_verify(self):
        """Test that a signature verifies through the parsed public blob."""
        key = hostkey.Ed25519Key.generate()
        sig = key.sign_ssh_data(H)

        public = hostkey.parse_public_key(key.asbytes())
        assert public.verify_ssh_sig(H, sig)
        assert not public.can_sign()

    def test_wrong_data(self):
        """Test that a signature over other data fails."""
        key = hostkey.Ed25519Key.generate()
        sig = key.sign_ssh_data(H)

        assert not key.verify_ssh_sig(H[::-1], sig)

    def test_blob_layout(self):
        """Test string type then 32 byte string public key."""
        r = sshtype.SshReader(hostkey.Ed25519Key.generate().asbytes())
        assert r.read_string() == "ssh-ed25519"
        assert len(r.read_binary()) == 32
        assert r.at_end()

    def test_from_private_key_file(self, tmp_path):
        """Test loading an OpenSSH format private key."""
        private = Ed25519PrivateKey.generate()
        path = tmp_path / "id_ed25519"
        path.write_bytes(private.private_bytes(\
            serialization.Encoding.PEM, serialization.PrivateFormat.OpenSSH,\
            serialization.NoEncryption()))

        key = hostkey.Ed25519Key.from_private_key_file(str(path))

        assert key.can_sign()
        assert key.raw_public_key() == private.public_key().public_bytes(\
            serialization.Encoding.Raw, serialization.PublicFormat.Raw)

class TestRsaKey:
    """rsa-sha2-256/512 verification."""

    def test_verify(self, rsa_key):
        """Test that a PKCS#1 v1.5 SHA-256 signature verifies."""
        public = hostkey.parse_public_key(_rsa_blob(rsa_key))
        assert public.verify_ssh_sig(H, _rsa_sig(rsa_key, H))

    def test_bad_signature(self, rsa_key):
        """Test that a signature over other data fails."""
        public = hostkey.parse_public_key(_rsa_blob(rsa_key))
        assert not public.verify_ssh_sig(H, _rsa_sig(rsa_key, H[::-1]))

    def test_legacy_sha1_refused(self, rsa_key):
        """Test that plain ssh-rsa (SHA-1) signatures are not accepted."""
        public = hostkey.parse_public_key(_rsa_blob(rsa_key))
        assert not public.verify_ssh_sig(H, _rsa_sig(rsa_key, H, "ssh-rsa"))

class TestPublicKeyLine:
    """OpenSSH 'type base64 comment' lines."""

    def test_parse(self):
        """Test that the blob is recovered from a line."""
        blob = hostkey.Ed25519Key.generate().asbytes()
        line = "ssh-ed25519 {} me@host".format(\
            base64.b64encode(blob).decode("ascii"))

        assert hostkey.parse_public_key_line(line) == blob

    def test_type_mismatch(self):
        """Test that the declared type must match the blob."""
        blob = hostkey.Ed25519Key.generate().asbytes()
        line = "ssh-rsa {}".format(base64.b64encode(blob).decode("ascii"))

        with pytest.raises(SshException):
            hostkey.parse_public_key_line(line)

    def test_fingerprint(self):
        """Test the OpenSSH fingerprint format."""
        fp = hostkey.fingerprint(b"blob")
        assert fp.startswith("SHA256:")
        assert not fp.endswith("=")

class TestHostKeyPolicy:
    """Trust decisions over the exchange hash signature."""

    def test_unpinned_accepts_valid_signature(self):
        """Test that any correctly signing key is accepted without pins."""
        key = hostkey.Ed25519Key.generate()
        policy = hostkey.HostKeyPolicy()

        assert policy.verify(key.asbytes(), key.sign_ssh_data(H), H)

    def test_bad_signature(self):
        """Test that a signature by another key is refused."""
        key = hostkey.Ed25519Key.generate()
        other = hostkey.Ed25519Key.generate()

        with pytest.raises(SshHostKeyError):
            hostkey.HostKeyPolicy().verify(key.asbytes(),\
                other.sign_ssh_data(H), H)

    def test_pinned(self):
        """Test that a pinned key is accepted and others refused."""
        key = hostkey.Ed25519Key.generate()
        other = hostkey.Ed25519Key.generate()
        policy = hostkey.HostKeyPolicy([key.asbytes()])

        assert policy.verify(key.asbytes(), key.sign_ssh_data(H), H)
        with pytest.raises(SshHostKeyError):
            policy.verify(other.asbytes(), other.sign_ssh_data(H), H)

    def test_unsupported_key_type(self):
        """Test that an unknown key type cannot be verified."""
        blob = sshtype.encode_string("ssh-dss") + sshtype.encode_uint32(0)
        with pytest.raises(SshHostKeyError):
            hostkey.HostKeyPolicy().verify(blob, b"", H)

    def test_accept_any(self):
        """Test that the insecure policy checks nothing."""
        policy = hostkey.AcceptAnyHostKeyPolicy()
        assert policy.verify(b"garbage", b"", H) is None

    def test_negotiated_algorithm_matches(self, rsa_key):
        """Test that a signature in the negotiated algorithm is accepted."""
        policy = hostkey.HostKeyPolicy()
        blob = _rsa_blob(rsa_key)
        sig = _rsa_sig(rsa_key, H, "rsa-sha2-512")

        assert policy.verify(blob, sig, H, "rsa-sha2-512")

    def test_negotiated_algorithm_mismatch(self, rsa_key):
        """Test that a valid signature in another algorithm is refused."""
        policy = hostkey.HostKeyPolicy()
        blob = _rsa_blob(rsa_key)
        sig = _rsa_sig(rsa_key, H, "rsa-sha2-256")

        with pytest.raises(SshHostKeyError):
            policy.verify(blob, sig, H, "rsa-sha2-512")
