# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

"""
SshClient: a sequential, blocking SSH-2 client connection.

The client owns the transport, the cipher state, the authentication engine
and the channel manager, and moves through ConnectionState strictly in
order. Fatal errors close the connection before they propagate.
"""

import llog

from enum import Enum
import functools
import logging
import os
import threading

import kex
import sshwire
import transport as mtransport
import packet as mnp
from channel import ChannelManager
from hostkey import HostKeyPolicy
from kexcurve25519sha256 import KexCurve25519Sha256
from sshcipher import PacketCipher
from sshexception import *
from userauth import AuthenticationEngine, AuthResult, check_result

LOCAL_BANNER = "SSH-2.0-sshc_0.1"
SUPPORTED_VERSIONS = ("SSH-2.0-", "SSH-1.99-")
MAX_PRE_BANNER_LINES = 1024
RECV_SIZE = 0x10000

log = logging.getLogger(__name__)

class ConnectionState(Enum):
    initial = 0
    sent_version = 1
    received_version = 2
    sent_kex_init = 3
    received_kex_init = 4
    sent_kex_ecdh_init = 5
    received_kex_ecdh_reply = 6
    sent_new_keys = 7
    received_new_keys = 8
    authenticated = 9
    channel_open = 10
    established = 11
    closed = 12

def _operation(func):
    "Serialises a public operation and closes the connection on fatal errors."
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            try:
                return func(self, *args, **kwargs)
            except SshException as e:
                if e.fatal:
                    self._abort(e)
                raise
    return wrapper

class SshClient(object):
    def __init__(self, transport=None, resolver=None, host_key_policy=None,\
            timeout=None):
        self.transport = transport or mtransport.TcpTransport(timeout)
        self.resolver = resolver or mtransport.resolve
        self.host_key_policy = host_key_policy or HostKeyPolicy()

        self.state = ConnectionState.initial
        self._lock = threading.RLock()

        self.local_banner = LOCAL_BANNER
        self.remote_banner = None

        self.buf = sshwire.PacketBuffer()

        self.local_kex_init_message = None
        self.remote_kex_init_message = None
        self.negotiated = None
        self.k = None
        self.h = None
        self.session_id = None
        self.server_host_key = None
        self.keys = None

        self.out_cipher = None
        self.in_cipher = None
        self.out_seq = 0
        self.in_seq = 0

        self._in_kex = False
        self._initial_kex = False

        self.auth = AuthenticationEngine(self)
        self.channels = ChannelManager(self)

    # State machine.

    def _require(self, minimum, maximum=ConnectionState.established):
        state = self.state
        if state is ConnectionState.closed\
                or state.value < minimum.value or state.value > maximum.value:
            raise SshInvalidStateError("Operation requires state [{}] but"\
                " connection is [{}].".format(minimum.name, state.name))

    def _advance(self, new_state):
        state = self.state

        if state is ConnectionState.closed:
            raise SshInvalidStateError("Connection is closed.")

        if state.value >= ConnectionState.authenticated.value\
                and new_state.value <= state.value:
            # A second channel or exec once established.
            return

        if new_state.value != state.value + 1:
            raise SshInvalidStateError("Illegal transition [{}] -> [{}]."\
                .format(state.name, new_state.name))

        if log.isEnabledFor(logging.INFO):
            log.info("State [{}] -> [{}].".format(state.name, new_state.name))

        self.state = new_state

    def kex_progress(self, name):
        "Called by the exchange method; only the first exchange moves state."
        if self._initial_kex:
            self._advance(ConnectionState[name])

    # Transport.

    def _send_raw(self, data):
        try:
            self.transport.send(data)
        except OSError as e:
            raise SshTransportError("Transport send failed: {}.".format(e))

    def _fill(self):
        try:
            data = self.transport.recv(RECV_SIZE)
        except OSError as e:
            raise SshTransportError("Transport recv failed: {}.".format(e))

        if not data:
            raise SshTransportError("Connection closed by peer.")

        self.buf.feed(data)

    def _close_transport(self):
        try:
            self.transport.close()
        except OSError as e:
            log.warning("Error closing transport: {}.".format(e))

    def _abort(self, e):
        if self.state is ConnectionState.closed:
            return

        log.warning("Closing connection on fatal error: {}: {}."\
            .format(type(e).__name__, e))

        if not isinstance(e, SshTransportError)\
                and self.state.value >= ConnectionState.sent_version.value:
            self._send_disconnect(e.reason_code, str(e))

        self.channels.close_all(send=False)
        self._close_transport()
        self.state = ConnectionState.closed

    def _send_disconnect(self, reason_code, description):
        m = mnp.SshDisconnectMessage()
        m.reason_code = reason_code
        m.description = description
        m.encode()

        try:
            self.write_packet(m)
        except (SshException, OSError) as e:
            log.info("Unable to send DISCONNECT: {}.".format(e))

    # Packets.

    def write_packet(self, msg):
        payload = msg.buf

        if log.isEnabledFor(logging.DEBUG):
            log.debug("Writing packet type [{}] ([{}] bytes)."\
                .format(payload[0], len(payload)))

        if self.out_cipher:
            data = self.out_cipher.encrypt(self.out_seq, payload)
            self.out_seq += 1
        else:
            data = sshwire.encode(payload)

        self._send_raw(data)

    def _read_raw_packet(self):
        while True:
            if self.in_cipher:
                pkt = self.in_cipher.read_from(self.buf, self.in_seq)
                if pkt is not None:
                    self.in_seq += 1
            else:
                pkt = sshwire.decode(self.buf)

            if pkt is not None:
                return pkt

            self._fill()

    def read_packet(self):
        """
        Returns the next payload, handling transport level messages that may
        arrive at any time on the way.
        """
        while True:
            pkt = self._read_raw_packet()
            packet_type = mnp.SshPacket.parse_type(pkt)

            if log.isEnabledFor(logging.DEBUG):
                log.debug("Read packet type [{}] ([{}] bytes)."\
                    .format(packet_type, len(pkt)))

            if packet_type == mnp.SSH_MSG_IGNORE:
                continue
            elif packet_type == mnp.SSH_MSG_DEBUG:
                m = mnp.SshDebugMessage(pkt)
                log.info("Peer debug message [{}].".format(m.message))
                continue
            elif packet_type == mnp.SSH_MSG_UNIMPLEMENTED:
                m = mnp.SshUnimplementedMessage(pkt)
                log.warning("Peer did not implement our packet seq [{}]."\
                    .format(m.sequence_number))
                continue
            elif packet_type == mnp.SSH_MSG_GLOBAL_REQUEST:
                m = mnp.SshGlobalRequestMessage(pkt)
                log.info("Refusing global request [{}].".format(m.request_name))
                if m.want_reply:
                    mr = mnp.SshRequestFailureMessage()
                    mr.encode()
                    self.write_packet(mr)
                continue
            elif packet_type == mnp.SSH_MSG_DISCONNECT:
                m = mnp.SshDisconnectMessage(pkt)
                log.warning("Peer disconnected (reason=[{}], [{}])."\
                    .format(m.reason_code, m.description))
                raise SshDisconnectedError("Peer disconnected: [{}] {}."\
                    .format(m.reason_code, m.description),\
                    peer_reason_code=m.reason_code,\
                    description=m.description)
            elif packet_type == mnp.SSH_MSG_KEXINIT\
                    and not self._in_kex and self.session_id is not None:
                log.info("Peer initiated re-key.")
                self._run_kex(pkt)
                continue

            return pkt

    def _read_kex_packet(self, expected_type):
        while True:
            pkt = self.read_packet()
            packet_type = mnp.SshPacket.parse_type(pkt)

            if packet_type == expected_type:
                return pkt

            if self.session_id is not None\
                    and packet_type in mnp.CHANNEL_MESSAGES:
                # In flight when the re-key began.
                self.channels.handle_packet(pkt)
                continue

            raise SshProtocolError("Expected packet type [{}] but got [{}]"\
                " during key exchange.".format(expected_type, packet_type))

    # Key exchange callbacks.

    def set_K_H(self, k, h):
        self.k = k
        self.h = h

        if self.session_id is None:
            self.session_id = h

    def verify_server_key(self, host_key, signature):
        if self.server_host_key is not None\
                and bytes(host_key) != self.server_host_key:
            raise SshHostKeyError("Host key changed during re-key.")

        self.host_key_policy.verify(host_key, signature, self.h,\
            self.negotiated.host_key_algorithm)

        self.server_host_key = bytes(host_key)

    def init_outbound_encryption(self, keys):
        log.info("Initializing outbound encryption.")

        if self.out_cipher is None:
            self.out_seq = 0

        self.keys = keys
        self.out_cipher = PacketCipher(self.negotiated.cipher_c2s,\
            keys.key_c2s)

    def init_inbound_encryption(self, keys):
        log.info("Initializing inbound encryption.")

        if self.in_cipher is None:
            self.in_seq = 0

        self.in_cipher = PacketCipher(self.negotiated.cipher_s2c,\
            keys.key_s2c)

    def _read_version(self):
        for _ in range(MAX_PRE_BANNER_LINES):
            line = self.buf.take_line()
            while line is None:
                self._fill()
                line = self.buf.take_line()

            if not line.startswith(b"SSH-"):
                if log.isEnabledFor(logging.DEBUG):
                    log.debug("Skipping pre-banner line [{}].".format(line))
                continue

            try:
                banner = line.decode("UTF-8")
            except UnicodeDecodeError:
                raise SshProtocolError("Version line is not valid UTF-8.")

            if not banner.startswith(SUPPORTED_VERSIONS):
                raise SshProtocolError("Unsupported protocol version [{}]."\
                    .format(banner))

            return banner

        raise SshProtocolError("No version line received.")

    def _build_kex_init(self):
        m = mnp.SshKexInitMessage()
        m.cookie = os.urandom(16)
        m.kex_algorithms = ",".join(kex.KEX_ALGORITHMS)
        m.server_host_key_algorithms =\
            ",".join(kex.SERVER_HOST_KEY_ALGORITHMS)
        m.encryption_algorithms_client_to_server =\
            ",".join(kex.ENCRYPTION_ALGORITHMS)
        m.encryption_algorithms_server_to_client =\
            ",".join(kex.ENCRYPTION_ALGORITHMS)
        m.mac_algorithms_client_to_server = ",".join(kex.MAC_ALGORITHMS)
        m.mac_algorithms_server_to_client = ",".join(kex.MAC_ALGORITHMS)
        m.compression_algorithms_client_to_server =\
            ",".join(kex.COMPRESSION_ALGORITHMS)
        m.compression_algorithms_server_to_client =\
            ",".join(kex.COMPRESSION_ALGORITHMS)
        m.encode()

        return m

    def _run_kex(self, remote_kex_init=None):
        self._in_kex = True
        self._initial_kex = self.session_id is None

        try:
            m = self._build_kex_init()
            self.local_kex_init_message = bytes(m.buf)
            self.write_packet(m)

            self.kex_progress("sent_kex_init")

            if remote_kex_init is None:
                remote_kex_init = self._read_kex_packet(mnp.SSH_MSG_KEXINIT)

            self.remote_kex_init_message = bytes(remote_kex_init)
            rm = mnp.SshKexInitMessage(remote_kex_init)

            if log.isEnabledFor(logging.INFO):
                log.info("Server kex_algorithms=[{}]."\
                    .format(rm.kex_algorithms))

            self.negotiated = kex.negotiate(m, rm)

            self.kex_progress("received_kex_init")

            if rm.first_kex_packet_follows and not self._guessed_right(m, rm):
                pkt = self.read_packet()
                if log.isEnabledFor(logging.INFO):
                    log.info("Discarded wrongly guessed kex packet type [{}]."\
                        .format(mnp.SshPacket.parse_type(pkt)))

            KexCurve25519Sha256(self).run()
        finally:
            self._in_kex = False
            self._initial_kex = False

        log.info("Key exchange complete.")

    def _guessed_right(self, local, remote):
        split = kex.split_names
        return split(local.kex_algorithms)[:1]\
                == split(remote.kex_algorithms)[:1]\
            and split(local.server_host_key_algorithms)[:1]\
                == split(remote.server_host_key_algorithms)[:1]

    # Public operations.

    @_operation
    def connect(self, host, port=22):
        self._require(ConnectionState.initial, ConnectionState.initial)

        try:
            addr = self.resolver(host)
        except OSError as e:
            raise SshTransportError("Unable to resolve [{}]: {}."\
                .format(host, e))

        try:
            self.transport.connect(addr, port)
        except OSError as e:
            raise SshTransportError("Unable to connect to [{}:{}]: {}."\
                .format(addr, port, e))

        log.info("X: Sending banner.")
        self._send_raw((self.local_banner + "\r\n").encode("UTF-8"))
        self._advance(ConnectionState.sent_version)

        self.remote_banner = self._read_version()
        if log.isEnabledFor(logging.INFO):
            log.info("X: Received banner [{}].".format(self.remote_banner))
        self._advance(ConnectionState.received_version)

        self._run_kex()

    @_operation
    def authenticate_password(self, user_name, password):
        self._require(ConnectionState.received_new_keys,\
            ConnectionState.received_new_keys)

        result = self.auth.authenticate_password(user_name, password)
        if result is AuthResult.success:
            self._advance(ConnectionState.authenticated)
        elif result is AuthResult.failure:
            check_result(result, self.auth)

        return result

    @_operation
    def authenticate_publickey(self, user_name, key):
        self._require(ConnectionState.received_new_keys,\
            ConnectionState.received_new_keys)

        result = self.auth.authenticate_publickey(user_name, key)
        if result is AuthResult.success:
            self._advance(ConnectionState.authenticated)
        elif result is AuthResult.failure:
            check_result(result, self.auth)

        return result

    @_operation
    def open_session(self):
        self._require(ConnectionState.authenticated)

        local_id = self.channels.open()
        self._advance(ConnectionState.channel_open)

        return local_id

    @_operation
    def request_pty(self, local_id, term="xterm", cols=80, rows=24):
        self._require(ConnectionState.channel_open)
        self.channels.request_pty(local_id, term, cols, rows)

    @_operation
    def window_change(self, local_id, cols, rows):
        self._require(ConnectionState.channel_open)
        self.channels.window_change(local_id, cols, rows)

    @_operation
    def request_shell(self, local_id):
        self._require(ConnectionState.channel_open)
        self.channels.request_shell(local_id)
        self._advance(ConnectionState.established)

    @_operation
    def exec(self, local_id, command):
        self._require(ConnectionState.channel_open)
        self.channels.exec(local_id, command)
        self._advance(ConnectionState.established)

    @_operation
    def send(self, local_id, data):
        self._require(ConnectionState.established)
        return self.channels.send(local_id, data)

    @_operation
    def sendall(self, local_id, data):
        "Sends all of data, reading window adjusts while the window is shut."
        self._require(ConnectionState.established)

        data = memoryview(bytes(data))
        while data:
            try:
                n = self.channels.send(local_id, data)
            except SshWouldBlock:
                self.channels.poll()
                continue
            data = data[n:]

    @_operation
    def recv(self, local_id):
        self._require(ConnectionState.established)
        return self.channels.recv(local_id)

    @_operation
    def send_eof(self, local_id):
        self._require(ConnectionState.established)
        self.channels.send_eof(local_id)

    @_operation
    def wait_closed(self, local_id):
        self._require(ConnectionState.channel_open)
        self.channels.wait_closed(local_id)

    @_operation
    def close_channel(self, local_id):
        self._require(ConnectionState.channel_open)
        self.channels.close(local_id)

    def exit_status(self, local_id):
        return self.channels.exit_status(local_id)

    @_operation
    def rekey(self):
        self._require(ConnectionState.received_new_keys)
        self._run_kex()

    def disconnect(self):
        "Best effort; never raises and may be called any number of times."
        with self._lock:
            state = self.state
            if state is ConnectionState.closed:
                return

            self.state = ConnectionState.closed

            if state.value >= ConnectionState.sent_version.value:
                try:
                    self.channels.close_all()
                except (SshException, OSError) as e:
                    log.warning("Error closing channels: {}.".format(e))

                self._send_disconnect(SSH_DISCONNECT_BY_APPLICATION,\
                    "User requested disconnect")

            self._close_transport()

            log.info("Disconnected.")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.disconnect()

def exec_command(host, port, user_name, password, command,\
        host_key_policy=None, transport=None, resolver=None):
    "Runs command and returns (exit_status, output)."
    client = SshClient(transport=transport, resolver=resolver,\
        host_key_policy=host_key_policy)

    with client:
        client.connect(host, port)

        check_result(client.authenticate_password(user_name, password),\
            client.auth)

        local_id = client.open_session()
        client.exec(local_id, command)

        output = bytearray()
        while True:
            try:
                data = client.recv(local_id)
            except SshWouldBlock:
                continue
            except SshChannelClosedError:
                break
            if not data:
                break
            output += data

        client.wait_closed(local_id)

        return client.exit_status(local_id), bytes(output)
