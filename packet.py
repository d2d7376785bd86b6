# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

import llog

import struct
import logging

import sshtype
from sshexception import SshProtocolError

SSH_MSG_DISCONNECT = 1
SSH_MSG_IGNORE = 2
SSH_MSG_UNIMPLEMENTED = 3
SSH_MSG_DEBUG = 4
SSH_MSG_SERVICE_REQUEST = 5
SSH_MSG_SERVICE_ACCEPT = 6
SSH_MSG_KEXINIT = 20
SSH_MSG_NEWKEYS = 21
SSH_MSG_KEX_ECDH_INIT = 30
SSH_MSG_KEX_ECDH_REPLY = 31

SSH_MSG_USERAUTH_REQUEST = 50
SSH_MSG_USERAUTH_FAILURE = 51
SSH_MSG_USERAUTH_SUCCESS = 52
SSH_MSG_USERAUTH_BANNER = 53

# Method specific; both share the same number.
SSH_MSG_USERAUTH_PK_OK = 60
SSH_MSG_USERAUTH_PASSWD_CHANGEREQ = 60

SSH_MSG_GLOBAL_REQUEST = 80
SSH_MSG_REQUEST_SUCCESS = 81
SSH_MSG_REQUEST_FAILURE = 82
SSH_MSG_CHANNEL_OPEN = 90
SSH_MSG_CHANNEL_OPEN_CONFIRMATION = 91
SSH_MSG_CHANNEL_OPEN_FAILURE = 92
SSH_MSG_CHANNEL_WINDOW_ADJUST = 93
SSH_MSG_CHANNEL_DATA = 94
SSH_MSG_CHANNEL_EXTENDED_DATA = 95
SSH_MSG_CHANNEL_EOF = 96
SSH_MSG_CHANNEL_CLOSE = 97
SSH_MSG_CHANNEL_REQUEST = 98
SSH_MSG_CHANNEL_SUCCESS = 99
SSH_MSG_CHANNEL_FAILURE = 100

SSH_EXTENDED_DATA_STDERR = 1

CHANNEL_MESSAGES = range(SSH_MSG_CHANNEL_OPEN, SSH_MSG_CHANNEL_FAILURE + 1)

log = logging.getLogger(__name__)

class SshPacket():
    @staticmethod
    def parse_type(buf, offset=0):
        if len(buf) <= offset:
            raise SshProtocolError("Empty payload.")
        return struct.unpack_from("B", buf, offset)[0]

    def __init__(self, packet_type=None, buf=None):
        self.buf = buf
        self.packet_type = packet_type

        if buf is None:
            return

        self._packet_type = packet_type # Expected packet_type.

        self.parse()

    def parse(self):
        "Returns a reader positioned after the message type byte."
        r = sshtype.SshReader(self.buf)

        self.packet_type = r.read_byte()

        if self._packet_type and self.packet_type != self._packet_type:
            raise SshProtocolError("Expecting packet type [{}] but got [{}]."\
                .format(self._packet_type, self.packet_type))

        return r

    def encode(self):
        nbuf = bytearray()
        nbuf += struct.pack("B", self.packet_type & 0xFF)

        self.buf = nbuf

        return nbuf

class SshDisconnectMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.reason_code = None
            self.description = ""
            self.language_tag = ""

        super().__init__(SSH_MSG_DISCONNECT, buf)

    def parse(self):
        r = super().parse()

        self.reason_code = r.read_uint32()
        self.description = r.read_string()
        self.language_tag = r.read_string()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.reason_code)
        sshtype.encode_string_onto(nbuf, self.description)
        sshtype.encode_string_onto(nbuf, self.language_tag)

        return nbuf

class SshIgnoreMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.data = b""

        super().__init__(SSH_MSG_IGNORE, buf)

    def parse(self):
        r = super().parse()

        self.data = r.read_binary()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_binary_onto(nbuf, self.data)

        return nbuf

class SshUnimplementedMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.sequence_number = None

        super().__init__(SSH_MSG_UNIMPLEMENTED, buf)

    def parse(self):
        r = super().parse()

        self.sequence_number = r.read_uint32()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.sequence_number)

        return nbuf

class SshDebugMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.always_display = False
            self.message = ""
            self.language_tag = ""

        super().__init__(SSH_MSG_DEBUG, buf)

    def parse(self):
        r = super().parse()

        self.always_display = r.read_boolean()
        self.message = r.read_string()
        self.language_tag = r.read_string()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_boolean_onto(nbuf, self.always_display)
        sshtype.encode_string_onto(nbuf, self.message)
        sshtype.encode_string_onto(nbuf, self.language_tag)

        return nbuf

class SshServiceRequestMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.service_name = None

        super().__init__(SSH_MSG_SERVICE_REQUEST, buf)

    def parse(self):
        r = super().parse()

        self.service_name = r.read_string()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_string_onto(nbuf, self.service_name)

        return nbuf

class SshServiceAcceptMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.service_name = None

        super().__init__(SSH_MSG_SERVICE_ACCEPT, buf)

    def parse(self):
        r = super().parse()

        self.service_name = r.read_string()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_string_onto(nbuf, self.service_name)

        return nbuf

class SshKexInitMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.cookie = None
            self.kex_algorithms = ""
            self.server_host_key_algorithms = ""
            self.encryption_algorithms_client_to_server = ""
            self.encryption_algorithms_server_to_client = ""
            self.mac_algorithms_client_to_server = ""
            self.mac_algorithms_server_to_client = ""
            self.compression_algorithms_client_to_server = ""
            self.compression_algorithms_server_to_client = ""
            self.languages_client_to_server = ""
            self.languages_server_to_client = ""
            self.first_kex_packet_follows = False

        super().__init__(SSH_MSG_KEXINIT, buf)

    def parse(self):
        r = super().parse()

        self.cookie = r.read_bytes(16)
        self.kex_algorithms = r.read_string()
        self.server_host_key_algorithms = r.read_string()
        self.encryption_algorithms_client_to_server = r.read_string()
        self.encryption_algorithms_server_to_client = r.read_string()
        self.mac_algorithms_client_to_server = r.read_string()
        self.mac_algorithms_server_to_client = r.read_string()
        self.compression_algorithms_client_to_server = r.read_string()
        self.compression_algorithms_server_to_client = r.read_string()
        self.languages_client_to_server = r.read_string()
        self.languages_server_to_client = r.read_string()
        self.first_kex_packet_follows = r.read_boolean()
        r.read_uint32() # Reserved.

    def encode(self):
        nbuf = super().encode()

        nbuf += self.cookie
        sshtype.encode_name_list_onto(nbuf, self.kex_algorithms)
        sshtype.encode_name_list_onto(nbuf, self.server_host_key_algorithms)
        sshtype.encode_name_list_onto(nbuf,\
            self.encryption_algorithms_client_to_server)
        sshtype.encode_name_list_onto(nbuf,\
            self.encryption_algorithms_server_to_client)
        sshtype.encode_name_list_onto(nbuf,\
            self.mac_algorithms_client_to_server)
        sshtype.encode_name_list_onto(nbuf,\
            self.mac_algorithms_server_to_client)
        sshtype.encode_name_list_onto(nbuf,\
            self.compression_algorithms_client_to_server)
        sshtype.encode_name_list_onto(nbuf,\
            self.compression_algorithms_server_to_client)
        sshtype.encode_name_list_onto(nbuf, self.languages_client_to_server)
        sshtype.encode_name_list_onto(nbuf, self.languages_server_to_client)
        sshtype.encode_boolean_onto(nbuf, self.first_kex_packet_follows)
        sshtype.encode_uint32_onto(nbuf, 0)

        return nbuf

class SshNewKeysMessage(SshPacket):
    def __init__(self, buf=None):
        super().__init__(SSH_MSG_NEWKEYS, buf)

class SshKexEcdhInitMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.q_c = None

        super().__init__(SSH_MSG_KEX_ECDH_INIT, buf)

    def parse(self):
        r = super().parse()

        self.q_c = r.read_binary()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_binary_onto(nbuf, self.q_c)

        return nbuf

class SshKexEcdhReplyMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.host_key = None
            self.q_s = None
            self.signature = None

        super().__init__(SSH_MSG_KEX_ECDH_REPLY, buf)

    def parse(self):
        r = super().parse()

        self.host_key = r.read_binary()
        self.q_s = r.read_binary()
        self.signature = r.read_binary()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_binary_onto(nbuf, self.host_key)
        sshtype.encode_binary_onto(nbuf, self.q_s)
        sshtype.encode_binary_onto(nbuf, self.signature)

        return nbuf

class SshUserauthRequestMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.user_name = None
            self.service_name = None
            self.method_name = None
            self.password = None
            self.new_password = None
            self.signature_present = False
            self.algorithm_name = None
            self.public_key = None
            self.signature = None

        super().__init__(SSH_MSG_USERAUTH_REQUEST, buf)

    def parse(self):
        r = super().parse()

        self.user_name = r.read_string()
        self.service_name = r.read_string()
        self.method_name = r.read_string()

        if self.method_name == "password":
            change = r.read_boolean()
            self.password = r.read_string()
            self.new_password = r.read_string() if change else None
        elif self.method_name == "publickey":
            self.signature_present = r.read_boolean()
            self.algorithm_name = r.read_string()
            self.public_key = r.read_binary()
            if self.signature_present:
                self.signature_offset = r.i
                self.signature = r.read_binary()
            else:
                self.signature = None

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_string_onto(nbuf, self.user_name)
        sshtype.encode_string_onto(nbuf, self.service_name)
        sshtype.encode_string_onto(nbuf, self.method_name)

        if self.method_name == "password":
            sshtype.encode_boolean_onto(nbuf, self.new_password is not None)
            sshtype.encode_string_onto(nbuf, self.password)
            if self.new_password is not None:
                sshtype.encode_string_onto(nbuf, self.new_password)
        elif self.method_name == "publickey":
            sshtype.encode_boolean_onto(nbuf, self.signature_present)
            sshtype.encode_string_onto(nbuf, self.algorithm_name)
            sshtype.encode_binary_onto(nbuf, self.public_key)
            # Leave signature for caller to append, as they need this encoded
            # data to sign.

        return nbuf

class SshUserauthFailureMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.auths = []
            self.partial_success = False

        super().__init__(SSH_MSG_USERAUTH_FAILURE, buf)

    def parse(self):
        r = super().parse()

        self.auths = r.read_name_list()
        self.partial_success = r.read_boolean()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_name_list_onto(nbuf, self.auths)
        sshtype.encode_boolean_onto(nbuf, self.partial_success)

        return nbuf

class SshUserauthSuccessMessage(SshPacket):
    def __init__(self, buf=None):
        super().__init__(SSH_MSG_USERAUTH_SUCCESS, buf)

class SshUserauthBannerMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.message = ""
            self.language_tag = ""

        super().__init__(SSH_MSG_USERAUTH_BANNER, buf)

    def parse(self):
        r = super().parse()

        self.message = r.read_string()
        self.language_tag = r.read_string()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_string_onto(nbuf, self.message)
        sshtype.encode_string_onto(nbuf, self.language_tag)

        return nbuf

class SshUserauthPasswdChangereqMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.prompt = ""
            self.language_tag = ""

        super().__init__(SSH_MSG_USERAUTH_PASSWD_CHANGEREQ, buf)

    def parse(self):
        r = super().parse()

        self.prompt = r.read_string()
        self.language_tag = r.read_string()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_string_onto(nbuf, self.prompt)
        sshtype.encode_string_onto(nbuf, self.language_tag)

        return nbuf

class SshGlobalRequestMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.request_name = None
            self.want_reply = False
            self.payload = None

        super().__init__(SSH_MSG_GLOBAL_REQUEST, buf)

    def parse(self):
        r = super().parse()

        self.request_name = r.read_string()
        self.want_reply = r.read_boolean()
        self.payload = r.read_rest()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_string_onto(nbuf, self.request_name)
        sshtype.encode_boolean_onto(nbuf, self.want_reply)
        if self.payload:
            nbuf += self.payload

        return nbuf

class SshRequestFailureMessage(SshPacket):
    def __init__(self, buf=None):
        super().__init__(SSH_MSG_REQUEST_FAILURE, buf)

class SshChannelOpenMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.channel_type = None
            self.sender_channel = None
            self.initial_window_size = None
            self.maximum_packet_size = None

        super().__init__(SSH_MSG_CHANNEL_OPEN, buf)

    def parse(self):
        r = super().parse()

        self.channel_type = r.read_string()
        self.sender_channel = r.read_uint32()
        self.initial_window_size = r.read_uint32()
        self.maximum_packet_size = r.read_uint32()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_string_onto(nbuf, self.channel_type)
        sshtype.encode_uint32_onto(nbuf, self.sender_channel)
        sshtype.encode_uint32_onto(nbuf, self.initial_window_size)
        sshtype.encode_uint32_onto(nbuf, self.maximum_packet_size)

        return nbuf

class SshChannelOpenConfirmationMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.recipient_channel = None
            self.sender_channel = None
            self.initial_window_size = None
            self.maximum_packet_size = None

        super().__init__(SSH_MSG_CHANNEL_OPEN_CONFIRMATION, buf)

    def parse(self):
        r = super().parse()

        self.recipient_channel = r.read_uint32()
        self.sender_channel = r.read_uint32()
        self.initial_window_size = r.read_uint32()
        self.maximum_packet_size = r.read_uint32()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.recipient_channel)
        sshtype.encode_uint32_onto(nbuf, self.sender_channel)
        sshtype.encode_uint32_onto(nbuf, self.initial_window_size)
        sshtype.encode_uint32_onto(nbuf, self.maximum_packet_size)

        return nbuf

class SshChannelOpenFailureMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.recipient_channel = None
            self.reason_code = None
            self.description = ""
            self.language_tag = ""

        super().__init__(SSH_MSG_CHANNEL_OPEN_FAILURE, buf)

    def parse(self):
        r = super().parse()

        self.recipient_channel = r.read_uint32()
        self.reason_code = r.read_uint32()
        self.description = r.read_string()
        self.language_tag = r.read_string()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.recipient_channel)
        sshtype.encode_uint32_onto(nbuf, self.reason_code)
        sshtype.encode_string_onto(nbuf, self.description)
        sshtype.encode_string_onto(nbuf, self.language_tag)

        return nbuf

class SshChannelWindowAdjustMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.recipient_channel = None
            self.bytes_to_add = None

        super().__init__(SSH_MSG_CHANNEL_WINDOW_ADJUST, buf)

    def parse(self):
        r = super().parse()

        self.recipient_channel = r.read_uint32()
        self.bytes_to_add = r.read_uint32()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.recipient_channel)
        sshtype.encode_uint32_onto(nbuf, self.bytes_to_add)

        return nbuf

class SshChannelDataMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.recipient_channel = None
            self.data = None

        super().__init__(SSH_MSG_CHANNEL_DATA, buf)

    def parse(self):
        r = super().parse()

        self.recipient_channel = r.read_uint32()
        self.data = r.read_binary()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.recipient_channel)
        sshtype.encode_binary_onto(nbuf, self.data)

        return nbuf

class SshChannelExtendedDataMessage(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.recipient_channel = None
            self.data_type_code = SSH_EXTENDED_DATA_STDERR
            self.data = None

        super().__init__(SSH_MSG_CHANNEL_EXTENDED_DATA, buf)

    def parse(self):
        r = super().parse()

        self.recipient_channel = r.read_uint32()
        self.data_type_code = r.read_uint32()
        self.data = r.read_binary()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.recipient_channel)
        sshtype.encode_uint32_onto(nbuf, self.data_type_code)
        sshtype.encode_binary_onto(nbuf, self.data)

        return nbuf

class _SshChannelOnlyMessage(SshPacket):
    "A channel message whose body is only the recipient channel."

    def __init__(self, packet_type, buf=None):
        if buf is None:
            self.recipient_channel = None

        super().__init__(packet_type, buf)

    def parse(self):
        r = super().parse()

        self.recipient_channel = r.read_uint32()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.recipient_channel)

        return nbuf

class SshChannelEofMessage(_SshChannelOnlyMessage):
    def __init__(self, buf=None):
        super().__init__(SSH_MSG_CHANNEL_EOF, buf)

class SshChannelCloseMessage(_SshChannelOnlyMessage):
    def __init__(self, buf=None):
        super().__init__(SSH_MSG_CHANNEL_CLOSE, buf)

class SshChannelSuccessMessage(_SshChannelOnlyMessage):
    def __init__(self, buf=None):
        super().__init__(SSH_MSG_CHANNEL_SUCCESS, buf)

class SshChannelFailureMessage(_SshChannelOnlyMessage):
    def __init__(self, buf=None):
        super().__init__(SSH_MSG_CHANNEL_FAILURE, buf)

class SshChannelRequest(SshPacket):
    def __init__(self, buf=None):
        if buf is None:
            self.recipient_channel = None
            self.request_type = None
            self.want_reply = False
            self.payload = None

        super().__init__(SSH_MSG_CHANNEL_REQUEST, buf)

    def parse(self):
        r = super().parse()

        self.recipient_channel = r.read_uint32()
        self.request_type = r.read_string()
        self.want_reply = r.read_boolean()

        if r.at_end():
            self.payload = None
            return
        self.payload = r.read_rest()

    def encode(self):
        nbuf = super().encode()

        sshtype.encode_uint32_onto(nbuf, self.recipient_channel)
        sshtype.encode_string_onto(nbuf, self.request_type)
        sshtype.encode_boolean_onto(nbuf, self.want_reply)
        if self.payload:
            nbuf += self.payload

        return nbuf

def recipient_channel(buf):
    "Returns the recipient channel of any channel message (90 excluded)."
    r = sshtype.SshReader(buf, 1)
    return r.read_uint32()
