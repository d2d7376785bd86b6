# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

"""
Session channels (RFC 4254) multiplexed over one connection.

Channels live in an arena keyed by local id. A channel is destroyed, moving
it to the finished map where its exit status stays readable, once both sides
have closed it and everything it received has been read.
"""

import llog

from collections import deque
from enum import Enum
import logging

import sshtype
import packet as mnp
from sshexception import SshProtocolError, SshChannelError,\
    SshChannelOpenError, SshChannelRequestError, SshChannelClosedError,\
    SshWouldBlock

DEFAULT_WINDOW_SIZE = 0x100000
DEFAULT_MAX_PACKET_SIZE = 0x8000
# type byte, recipient channel and data length of a CHANNEL_DATA message.
CHANNEL_DATA_OVERHEAD = 9
MAX_WINDOW = 0xFFFFFFFF

SSH_OPEN_ADMINISTRATIVELY_PROHIBITED = 1

log = logging.getLogger(__name__)

class ChannelStatus(Enum):
    opening = 1
    open = 2
    closed = 3

class Channel(object):
    def __init__(self, local_id, channel_type="session"):
        self.local_id = local_id
        self.channel_type = channel_type
        self.remote_id = None
        self.status = ChannelStatus.opening

        self.local_window = DEFAULT_WINDOW_SIZE
        self.remote_window = 0
        self.max_packet_size = DEFAULT_MAX_PACKET_SIZE

        self.eof_received = False
        self.eof_sent = False
        self.close_received = False
        self.close_sent = False

        self.data = deque()
        self.unadjusted = 0

        self.exit_status = None
        self.exit_signal = None

        self.open_failure = None
        self.pending_request = None
        self.request_result = None

    @property
    def closed(self):
        return self.close_received or self.close_sent

    def __repr__(self):
        return "Channel(local_id={}, remote_id={}, status={})"\
            .format(self.local_id, self.remote_id, self.status.name)

class ChannelManager(object):
    def __init__(self, protocol):
        self.protocol = protocol

        self.channels = {}
        self.finished = {}
        self._next_channel_id = 0

    def _allocate_channel_id(self):
        local_id = self._next_channel_id
        self._next_channel_id += 1
        return local_id

    def get(self, local_id):
        ch = self.channels.get(local_id)
        if ch is not None:
            return ch

        if local_id in self.finished:
            raise SshChannelClosedError("Channel [{}] is closed."\
                .format(local_id))

        raise SshChannelError("Unknown channel [{}].".format(local_id))

    def _wait(self, condition):
        while not condition():
            self.handle_packet(self.protocol.read_packet())

    def open(self, channel_type="session"):
        local_id = self._allocate_channel_id()
        ch = Channel(local_id, channel_type)
        self.channels[local_id] = ch

        m = mnp.SshChannelOpenMessage()
        m.channel_type = channel_type
        m.sender_channel = local_id
        m.initial_window_size = ch.local_window
        m.maximum_packet_size = DEFAULT_MAX_PACKET_SIZE
        m.encode()
        self.protocol.write_packet(m)

        if log.isEnabledFor(logging.INFO):
            log.info("Opening channel [{}] (type=[{}])."\
                .format(local_id, channel_type))

        self._wait(lambda: ch.status is not ChannelStatus.opening)

        if ch.open_failure is not None:
            del self.channels[local_id]
            self.finished[local_id] = ch

            m = ch.open_failure
            raise SshChannelOpenError("Channel open refused: [{}] {}."\
                .format(m.reason_code, m.description),\
                reason_code=m.reason_code, description=m.description)

        return local_id

    def _request(self, local_id, request_type, payload=None,\
            want_reply=True):
        ch = self.get(local_id)
        if ch.closed:
            raise SshChannelClosedError("Channel [{}] is closed."\
                .format(local_id))

        m = mnp.SshChannelRequest()
        m.recipient_channel = ch.remote_id
        m.request_type = request_type
        m.want_reply = want_reply
        m.payload = payload
        m.encode()

        if want_reply:
            ch.pending_request = request_type
            ch.request_result = None

        self.protocol.write_packet(m)

        if not want_reply:
            return

        self._wait(lambda: ch.request_result is not None or ch.closed)

        ch.pending_request = None

        if ch.request_result is not True:
            raise SshChannelRequestError("Channel [{}] request [{}] failed."\
                .format(local_id, request_type))

        if log.isEnabledFor(logging.INFO):
            log.info("Channel [{}] request [{}] succeeded."\
                .format(local_id, request_type))

    def request_pty(self, local_id, term="xterm", cols=80, rows=24):
        payload = bytearray()
        sshtype.encode_string_onto(payload, term)
        sshtype.encode_uint32_onto(payload, cols)
        sshtype.encode_uint32_onto(payload, rows)
        sshtype.encode_uint32_onto(payload, cols * 8)
        sshtype.encode_uint32_onto(payload, rows * 16)
        sshtype.encode_binary_onto(payload, b"")

        self._request(local_id, "pty-req", payload)

    def request_shell(self, local_id):
        self._request(local_id, "shell")

    def exec(self, local_id, command):
        payload = bytearray()
        sshtype.encode_string_onto(payload, command)

        self._request(local_id, "exec", payload)

    def window_change(self, local_id, cols, rows):
        payload = bytearray()
        sshtype.encode_uint32_onto(payload, cols)
        sshtype.encode_uint32_onto(payload, rows)
        sshtype.encode_uint32_onto(payload, cols * 8)
        sshtype.encode_uint32_onto(payload, rows * 16)

        self._request(local_id, "window-change", payload, want_reply=False)

    def send(self, local_id, data):
        "Returns the number of bytes of data actually sent."
        ch = self.get(local_id)
        if ch.closed or ch.eof_sent:
            raise SshChannelClosedError("Channel [{}] is closed for sending."\
                .format(local_id))

        if not data:
            return 0

        if ch.remote_window == 0:
            raise SshWouldBlock("Channel [{}] remote window is exhausted."\
                .format(local_id))

        n = min(len(data), ch.remote_window,\
            ch.max_packet_size - CHANNEL_DATA_OVERHEAD)

        m = mnp.SshChannelDataMessage()
        m.recipient_channel = ch.remote_id
        m.data = bytes(data[:n])
        m.encode()
        self.protocol.write_packet(m)

        ch.remote_window -= n

        if log.isEnabledFor(logging.DEBUG):
            log.debug("Sent [{}] bytes on channel [{}] (remote_window=[{}])."\
                .format(n, local_id, ch.remote_window))

        return n

    def recv(self, local_id):
        """
        Returns the next buffered data for the channel, reading one packet
        when nothing is buffered. Returns b"" once the peer sent EOF.
        """
        ch = self.get(local_id)

        if not ch.data and not ch.closed and not ch.eof_received:
            self.handle_packet(self.protocol.read_packet())

        if ch.data:
            data = ch.data.popleft()
            self._consumed(ch, len(data))
            return data

        if ch.closed:
            self._destroy_if_done(ch)
            raise SshChannelClosedError("Channel [{}] is closed."\
                .format(local_id))

        if ch.eof_received:
            return b""

        raise SshWouldBlock("No data yet for channel [{}].".format(local_id))

    def poll(self):
        "Reads and dispatches one packet."
        self.handle_packet(self.protocol.read_packet())

    def _consumed(self, ch, length):
        ch.unadjusted += length

        if ch.closed or ch.unadjusted < DEFAULT_WINDOW_SIZE // 2:
            return

        m = mnp.SshChannelWindowAdjustMessage()
        m.recipient_channel = ch.remote_id
        m.bytes_to_add = ch.unadjusted
        m.encode()
        self.protocol.write_packet(m)

        ch.local_window += ch.unadjusted
        ch.unadjusted = 0

    def send_eof(self, local_id):
        ch = self.get(local_id)
        if ch.eof_sent or ch.closed:
            return

        m = mnp.SshChannelEofMessage()
        m.recipient_channel = ch.remote_id
        m.encode()
        self.protocol.write_packet(m)

        ch.eof_sent = True

    def close(self, local_id):
        "Idempotent; closing an already closed channel does nothing."
        if local_id in self.finished:
            return

        ch = self.get(local_id)

        if not ch.close_sent:
            self._send_close(ch)

        # Our side is done with it; anything unread is discarded.
        if ch.close_received:
            ch.data.clear()
            self._destroy_if_done(ch)

    def wait_closed(self, local_id):
        "Blocks until the peer closed the channel."
        if local_id in self.finished:
            return

        ch = self.get(local_id)
        self._wait(lambda: ch.close_received)

    def close_all(self, send=True):
        "Tears down every channel, sending CLOSE for open ones if send."
        for local_id in list(self.channels):
            ch = self.channels[local_id]
            try:
                if send and ch.status is ChannelStatus.open\
                        and not ch.close_sent:
                    self._send_close(ch)
            finally:
                ch.status = ChannelStatus.closed
                del self.channels[local_id]
                self.finished[local_id] = ch

    def exit_status(self, local_id):
        ch = self.channels.get(local_id) or self.finished.get(local_id)
        if ch is None:
            raise SshChannelError("Unknown channel [{}].".format(local_id))
        return ch.exit_status

    def _send_close(self, ch):
        m = mnp.SshChannelCloseMessage()
        m.recipient_channel = ch.remote_id
        m.encode()
        self.protocol.write_packet(m)

        ch.close_sent = True

        if log.isEnabledFor(logging.INFO):
            log.info("Sent CHANNEL_CLOSE for channel [{}]."\
                .format(ch.local_id))

    def _destroy_if_done(self, ch):
        if not (ch.close_sent and ch.close_received) or ch.data:
            return

        ch.status = ChannelStatus.closed
        self.channels.pop(ch.local_id, None)
        self.finished[ch.local_id] = ch

        if log.isEnabledFor(logging.INFO):
            log.info("Channel [{}] destroyed.".format(ch.local_id))

    def handle_packet(self, pkt):
        "Processes one connection protocol message."
        packet_type = mnp.SshPacket.parse_type(pkt)

        if packet_type == mnp.SSH_MSG_CHANNEL_OPEN:
            self._refuse_open(mnp.SshChannelOpenMessage(pkt))
            return

        if packet_type not in mnp.CHANNEL_MESSAGES:
            raise SshProtocolError("Unexpected packet type [{}]."\
                .format(packet_type))

        local_id = mnp.recipient_channel(pkt)

        ch = self.channels.get(local_id)
        if ch is None:
            if local_id in self.finished:
                if log.isEnabledFor(logging.DEBUG):
                    log.debug("Ignoring packet type [{}] for finished"\
                        " channel [{}].".format(packet_type, local_id))
                return
            raise SshProtocolError("Packet type [{}] for unknown channel"\
                " [{}].".format(packet_type, local_id))

        if ch.status is ChannelStatus.opening:
            self._handle_open_reply(ch, packet_type, pkt)
            return

        if packet_type == mnp.SSH_MSG_CHANNEL_WINDOW_ADJUST:
            m = mnp.SshChannelWindowAdjustMessage(pkt)
            ch.remote_window = min(ch.remote_window + m.bytes_to_add,\
                MAX_WINDOW)
            if log.isEnabledFor(logging.DEBUG):
                log.debug("Channel [{}] remote_window=[{}]."\
                    .format(local_id, ch.remote_window))
        elif packet_type == mnp.SSH_MSG_CHANNEL_DATA:
            m = mnp.SshChannelDataMessage(pkt)
            self._data_received(ch, m.data)
        elif packet_type == mnp.SSH_MSG_CHANNEL_EXTENDED_DATA:
            m = mnp.SshChannelExtendedDataMessage(pkt)
            self._data_received(ch, m.data)
        elif packet_type == mnp.SSH_MSG_CHANNEL_EOF:
            log.info("Channel [{}] received EOF.".format(local_id))
            ch.eof_received = True
        elif packet_type == mnp.SSH_MSG_CHANNEL_CLOSE:
            log.info("Channel [{}] received CLOSE.".format(local_id))
            ch.close_received = True
            if not ch.close_sent:
                self._send_close(ch)
            self._destroy_if_done(ch)
        elif packet_type == mnp.SSH_MSG_CHANNEL_REQUEST:
            self._handle_request(ch, mnp.SshChannelRequest(pkt))
        elif packet_type in (mnp.SSH_MSG_CHANNEL_SUCCESS,\
                mnp.SSH_MSG_CHANNEL_FAILURE):
            if ch.pending_request is None:
                log.warning("Unsolicited request reply [{}] on channel [{}]."\
                    .format(packet_type, local_id))
                return
            ch.request_result = packet_type == mnp.SSH_MSG_CHANNEL_SUCCESS
        else:
            raise SshProtocolError("Unexpected packet type [{}] for open"\
                " channel [{}].".format(packet_type, local_id))

    def _refuse_open(self, m):
        log.info("Refusing server opened channel of type [{}]."\
            .format(m.channel_type))

        mr = mnp.SshChannelOpenFailureMessage()
        mr.recipient_channel = m.sender_channel
        mr.reason_code = SSH_OPEN_ADMINISTRATIVELY_PROHIBITED
        mr.description = "Channel type [{}] not supported."\
            .format(m.channel_type)
        mr.encode()
        self.protocol.write_packet(mr)

    def _handle_open_reply(self, ch, packet_type, pkt):
        if packet_type == mnp.SSH_MSG_CHANNEL_OPEN_CONFIRMATION:
            m = mnp.SshChannelOpenConfirmationMessage(pkt)
            if m.maximum_packet_size <= CHANNEL_DATA_OVERHEAD:
                raise SshProtocolError("Channel [{}] maximum packet size [{}]"\
                    " leaves no room for data.".format(ch.local_id,\
                        m.maximum_packet_size))

            ch.remote_id = m.sender_channel
            ch.remote_window = m.initial_window_size
            ch.max_packet_size =\
                min(DEFAULT_MAX_PACKET_SIZE, m.maximum_packet_size)
            ch.status = ChannelStatus.open

            if log.isEnabledFor(logging.INFO):
                log.info("Channel [{}] open (remote_id=[{}],"\
                    " remote_window=[{}], max_packet_size=[{}])."\
                        .format(ch.local_id, ch.remote_id, ch.remote_window,\
                            ch.max_packet_size))
        elif packet_type == mnp.SSH_MSG_CHANNEL_OPEN_FAILURE:
            m = mnp.SshChannelOpenFailureMessage(pkt)
            ch.open_failure = m
            ch.status = ChannelStatus.closed

            if log.isEnabledFor(logging.INFO):
                log.info("Channel [{}] open failed (reason=[{}], [{}])."\
                    .format(ch.local_id, m.reason_code, m.description))
        else:
            raise SshProtocolError("Packet type [{}] for channel [{}] that"\
                " is still opening.".format(packet_type, ch.local_id))

    def _data_received(self, ch, data):
        if len(data) > ch.local_window:
            raise SshProtocolError("Peer sent [{}] bytes on channel [{}] but"\
                " the window is [{}].".format(len(data), ch.local_id,\
                    ch.local_window))

        ch.local_window -= len(data)

        if data:
            ch.data.append(data)

        if log.isEnabledFor(logging.DEBUG):
            log.debug("Channel [{}] received [{}] bytes (local_window=[{}])."\
                .format(ch.local_id, len(data), ch.local_window))

    def _handle_request(self, ch, m):
        if m.request_type == "exit-status":
            r = sshtype.SshReader(m.payload or b"")
            ch.exit_status = r.read_uint32()
            if log.isEnabledFor(logging.INFO):
                log.info("Channel [{}] exit-status=[{}]."\
                    .format(ch.local_id, ch.exit_status))
        elif m.request_type == "exit-signal":
            r = sshtype.SshReader(m.payload or b"")
            ch.exit_signal = r.read_string()
            if log.isEnabledFor(logging.INFO):
                log.info("Channel [{}] exit-signal=[{}]."\
                    .format(ch.local_id, ch.exit_signal))
        elif log.isEnabledFor(logging.INFO):
            log.info("Ignoring channel [{}] request [{}]."\
                .format(ch.local_id, m.request_type))

        if m.want_reply and not ch.close_sent:
            mr = mnp.SshChannelFailureMessage()
            mr.recipient_channel = ch.remote_id
            mr.encode()
            self.protocol.write_packet(mr)
