# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

import os
from collections import deque

import pytest

import kex
import sshtype
import sshwire
import packet as mnp
from curve25519 import generate_ephemeral, compute_shared
from hostkey import Ed25519Key, parse_public_key
from sshcipher import PacketCipher, key_size
from sshexception import SshKexError

SERVER_BANNER = "SSH-2.0-FakeServer_1.0"
REMOTE_CHANNEL_ID = 7
REMOTE_WINDOW = 65536
REMOTE_MAX_PACKET = 32768

class FakeProtocol(object):
    """
    Stands in for SshClient below the channel and authentication layers:
    written packets are recorded and reads pop scripted payloads.
    """

    def __init__(self, session_id=b"\x01" * 32):
        self.session_id = session_id
        self.incoming = deque()
        self.written = []

    def push(self, msg):
        msg.encode()
        self.incoming.append(bytes(msg.buf))

    def write_packet(self, msg):
        self.written.append(bytes(msg.buf))

    def read_packet(self):
        if not self.incoming:
            raise AssertionError("Read with no scripted packet left.")
        return self.incoming.popleft()

    def written_types(self):
        return [pkt[0] for pkt in self.written]

class FakeSshServer(object):
    """
    Server half of a connection built from the project's own codec, kex and
    cipher modules. It is handed to SshClient as its transport, so every
    byte the client sends is processed synchronously and the replies are
    queued for the client's next recv.
    """

    def __init__(self, password="secret", host_key=None):
        self.password = password
        self.host_key = host_key or Ed25519Key.generate()

        self.banner = None
        self.authorized_keys = None
        self.pre_banner_lines = []
        self.version = SERVER_BANNER
        self.kex_algorithms = kex.KEX_ALGORITHMS
        self.ciphers = kex.ENCRYPTION_ALGORITHMS
        self.refuse_channel = False
        self.failing_requests = set()
        self.exec_output = b"hello\n"
        self.exec_exit_status = 0
        self.exec_auto_exit = True
        self.auto_adjust = False
        self.on_newkeys = []

        self.connected = False
        self.closed = False
        self.tamper_next = False

        self.inbuf = sshwire.PacketBuffer()
        self.outbox = bytearray()

        self.client_version = None
        self.local_kex_init = None
        self.remote_kex_init = None
        self.negotiated = None
        self.h = None
        self.session_id = None
        self.keys = None
        self.pending_keys = None
        self.kex_count = 0

        self.in_cipher = None
        self.out_cipher = None
        self.in_seq = 0
        self.out_seq = 0

        self.received = []
        self.received_data = bytearray()
        self.requests = []
        self.client_channel = None
        self.close_sent = False
        self.eof_received = False
        self.disconnect_reason = None

    # Transport interface.

    def connect(self, addr, port):
        self.connected = True
        for line in self.pre_banner_lines:
            self.outbox += line + b"\r\n"
        self.outbox += (self.version + "\r\n").encode("UTF-8")

    def send(self, data):
        if self.closed:
            raise BrokenPipeError("Fake server is closed.")
        self.inbuf.feed(data)
        self._process()

    def recv(self, size=4096):
        data = bytes(self.outbox[:size])
        del self.outbox[:size]
        return data

    def close(self):
        self.closed = True

    # Outbound.

    def push(self, msg):
        msg.encode()
        self._write(msg)

    def _write(self, msg):
        payload = msg.buf
        if self.out_cipher:
            data = bytearray(self.out_cipher.encrypt(self.out_seq, payload))
            self.out_seq += 1
            if self.tamper_next:
                self.tamper_next = False
                data[-1] ^= 0x01
        else:
            data = sshwire.encode(payload)
        self.outbox += data

    def start_rekey(self):
        self._send_kex_init()

    def _send_kex_init(self):
        m = mnp.SshKexInitMessage()
        m.cookie = os.urandom(16)
        m.kex_algorithms = ",".join(self.kex_algorithms)
        m.server_host_key_algorithms = "ssh-ed25519"
        m.encryption_algorithms_client_to_server = ",".join(self.ciphers)
        m.encryption_algorithms_server_to_client = ",".join(self.ciphers)
        m.mac_algorithms_client_to_server = "hmac-sha2-256"
        m.mac_algorithms_server_to_client = "hmac-sha2-256"
        m.compression_algorithms_client_to_server = "none"
        m.compression_algorithms_server_to_client = "none"
        m.encode()
        self.local_kex_init = bytes(m.buf)
        self._write(m)

    # Inbound.

    def _process(self):
        if self.client_version is None:
            line = self.inbuf.take_line()
            if line is None:
                return
            self.client_version = line.decode("UTF-8")
            self._send_kex_init()

        while True:
            if self.in_cipher:
                pkt = self.in_cipher.read_from(self.inbuf, self.in_seq)
                if pkt is not None:
                    self.in_seq += 1
            else:
                pkt = sshwire.decode(self.inbuf)

            if pkt is None:
                return

            self.received.append(pkt)
            self._handle(pkt)

    def received_types(self):
        return [pkt[0] for pkt in self.received]

    def _handle(self, pkt):
        t = pkt[0]

        if t == mnp.SSH_MSG_KEXINIT:
            self.remote_kex_init = pkt
            if self.local_kex_init is None:
                self._send_kex_init()
            try:
                self.negotiated = kex.negotiate(mnp.SshKexInitMessage(pkt),\
                    mnp.SshKexInitMessage(self.local_kex_init))
            except SshKexError:
                # The client notices too and disconnects.
                self.negotiated = None
        elif t == mnp.SSH_MSG_KEX_ECDH_INIT:
            self._kex_reply(mnp.SshKexEcdhInitMessage(pkt))
        elif t == mnp.SSH_MSG_NEWKEYS:
            self.in_cipher = PacketCipher(self.negotiated.cipher_c2s,\
                self.pending_keys.key_c2s)
            self.keys = self.pending_keys
            self.local_kex_init = None
            self.kex_count += 1
            while self.on_newkeys:
                self.push(self.on_newkeys.pop(0))
        elif t == mnp.SSH_MSG_SERVICE_REQUEST:
            m = mnp.SshServiceRequestMessage(pkt)
            mr = mnp.SshServiceAcceptMessage()
            mr.service_name = m.service_name
            self.push(mr)
        elif t == mnp.SSH_MSG_USERAUTH_REQUEST:
            self._userauth(mnp.SshUserauthRequestMessage(pkt), pkt)
        elif t == mnp.SSH_MSG_CHANNEL_OPEN:
            self._channel_open(mnp.SshChannelOpenMessage(pkt))
        elif t == mnp.SSH_MSG_CHANNEL_REQUEST:
            self._channel_request(mnp.SshChannelRequest(pkt))
        elif t == mnp.SSH_MSG_CHANNEL_DATA:
            data = mnp.SshChannelDataMessage(pkt).data
            self.received_data += data
            if self.auto_adjust:
                m = mnp.SshChannelWindowAdjustMessage()
                m.recipient_channel = self.client_channel
                m.bytes_to_add = len(data)
                self.push(m)
        elif t == mnp.SSH_MSG_CHANNEL_EOF:
            self.eof_received = True
        elif t == mnp.SSH_MSG_CHANNEL_CLOSE:
            if not self.close_sent:
                self._send_close()
        elif t == mnp.SSH_MSG_DISCONNECT:
            self.disconnect_reason = mnp.SshDisconnectMessage(pkt).reason_code

    def _kex_reply(self, m):
        priv, q_s = generate_ephemeral()
        k = int.from_bytes(compute_shared(priv, m.q_c), "big")

        host_key = self.host_key.asbytes()

        h = kex.compute_exchange_hash(self.client_version, self.version,\
            self.remote_kex_init, self.local_kex_init, host_key, m.q_c, q_s, k)
        self.h = h
        if self.session_id is None:
            self.session_id = h

        neg = self.negotiated
        self.pending_keys = kex.derive(k, h, self.session_id,\
            key_size(neg.cipher_c2s), key_size(neg.cipher_s2c))

        mr = mnp.SshKexEcdhReplyMessage()
        mr.host_key = host_key
        mr.q_s = q_s
        mr.signature = bytes(self.host_key.sign_ssh_data(h))
        self.push(mr)

        self.push(mnp.SshNewKeysMessage())

        self.out_cipher = PacketCipher(neg.cipher_s2c,\
            self.pending_keys.key_s2c)

    def _userauth(self, m, pkt):
        if self.banner:
            mb = mnp.SshUserauthBannerMessage()
            mb.message = self.banner
            self.push(mb)

        ok = False
        if m.method_name == "password":
            ok = m.password == self.password
        elif m.method_name == "publickey" and m.signature_present:
            signed = sshtype.encode_binary(self.session_id)\
                + pkt[:m.signature_offset]
            key = parse_public_key(m.public_key)
            ok = key.verify_ssh_sig(signed, m.signature)\
                and (self.authorized_keys is None\
                    or bytes(m.public_key) in self.authorized_keys)

        if ok:
            self.push(mnp.SshUserauthSuccessMessage())
        else:
            mr = mnp.SshUserauthFailureMessage()
            mr.auths = ["password", "publickey"]
            mr.partial_success = False
            self.push(mr)

    def _channel_open(self, m):
        self.client_channel = m.sender_channel

        if self.refuse_channel:
            mr = mnp.SshChannelOpenFailureMessage()
            mr.recipient_channel = m.sender_channel
            mr.reason_code = 1
            mr.description = "administratively prohibited"
            self.push(mr)
            return

        mr = mnp.SshChannelOpenConfirmationMessage()
        mr.recipient_channel = m.sender_channel
        mr.sender_channel = REMOTE_CHANNEL_ID
        mr.initial_window_size = REMOTE_WINDOW
        mr.maximum_packet_size = REMOTE_MAX_PACKET
        self.push(mr)

    def _channel_request(self, m):
        self.requests.append(m)

        assert m.recipient_channel == REMOTE_CHANNEL_ID

        failed = m.request_type in self.failing_requests

        if m.want_reply:
            if failed:
                mr = mnp.SshChannelFailureMessage()
            else:
                mr = mnp.SshChannelSuccessMessage()
            mr.recipient_channel = self.client_channel
            self.push(mr)

        if m.request_type == "exec" and not failed and self.exec_auto_exit:
            self.send_data(self.exec_output)
            self.send_exit_status(self.exec_exit_status)
            self.send_eof()
            self._send_close()

    def send_data(self, data):
        m = mnp.SshChannelDataMessage()
        m.recipient_channel = self.client_channel
        m.data = data
        self.push(m)

    def send_exit_status(self, status):
        m = mnp.SshChannelRequest()
        m.recipient_channel = self.client_channel
        m.request_type = "exit-status"
        m.want_reply = False
        m.payload = sshtype.encode_uint32(status)
        self.push(m)

    def send_eof(self):
        m = mnp.SshChannelEofMessage()
        m.recipient_channel = self.client_channel
        self.push(m)

    def _send_close(self):
        m = mnp.SshChannelCloseMessage()
        m.recipient_channel = self.client_channel
        self.push(m)
        self.close_sent = True

@pytest.fixture
def fake_protocol():
    return FakeProtocol()

@pytest.fixture
def server():
    return FakeSshServer()

@pytest.fixture
def client(server):
    from sshclient import SshClient
    return SshClient(transport=server, resolver=lambda host: "127.0.0.1")

@pytest.fixture
def established(client, server):
    "A client authenticated, with session channel 0 running a shell."
    client.connect("fake.example", 22)
    client.authenticate_password("alice", "secret")
    local_id = client.open_session()
    client.request_shell(local_id)
    return client, local_id
