# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

import llog

from enum import Enum
import logging

import sshtype
import packet as mnp
from sshexception import SshProtocolError, SshAuthError

SERVICE_USERAUTH = "ssh-userauth"
SERVICE_CONNECTION = "ssh-connection"

log = logging.getLogger(__name__)

class AuthResult(Enum):
    success = 1
    failure = 2
    need_more_info = 3

class AuthenticationEngine(object):
    "Client side of RFC 4252 over an established, encrypted transport."

    def __init__(self, protocol):
        self.protocol = protocol

        self.service_accepted = False
        self.banner = None
        self.allowed_methods = []
        self.partial_success = False
        self.prompt = None

    def request_service(self, name=SERVICE_USERAUTH):
        if self.service_accepted:
            return

        m = mnp.SshServiceRequestMessage()
        m.service_name = name
        m.encode()
        self.protocol.write_packet(m)

        pkt = self.protocol.read_packet()
        packet_type = mnp.SshPacket.parse_type(pkt)
        if packet_type != mnp.SSH_MSG_SERVICE_ACCEPT:
            raise SshProtocolError("Expected SERVICE_ACCEPT but got packet"\
                " type [{}].".format(packet_type))

        m = mnp.SshServiceAcceptMessage(pkt)
        if m.service_name != name:
            raise SshProtocolError("Server accepted service [{}] instead of"\
                " [{}].".format(m.service_name, name))

        log.info("Service [{}] accepted.".format(name))

        self.service_accepted = True

    def authenticate_password(self, user_name, password):
        self.request_service()

        m = mnp.SshUserauthRequestMessage()
        m.user_name = user_name
        m.service_name = SERVICE_CONNECTION
        m.method_name = "password"
        m.password = password
        m.encode()
        self.protocol.write_packet(m)

        return self._read_result(user_name, "password")

    def authenticate_publickey(self, user_name, key):
        self.request_service()

        m = mnp.SshUserauthRequestMessage()
        m.user_name = user_name
        m.service_name = SERVICE_CONNECTION
        m.method_name = "publickey"
        m.signature_present = True
        m.algorithm_name = key.get_name()
        m.public_key = key.asbytes()
        m.encode()

        # Signed data is the session id as a string followed by the request
        # up to and including the public key.
        sig_data = bytearray()
        sshtype.encode_binary_onto(sig_data, self.protocol.session_id)
        sig_data += m.buf

        sig = key.sign_ssh_data(sig_data)

        sshtype.encode_binary_onto(m.buf, sig)

        self.protocol.write_packet(m)

        return self._read_result(user_name, "publickey")

    def _read_result(self, user_name, method):
        while True:
            pkt = self.protocol.read_packet()
            packet_type = mnp.SshPacket.parse_type(pkt)

            if packet_type != mnp.SSH_MSG_USERAUTH_BANNER:
                break

            m = mnp.SshUserauthBannerMessage(pkt)
            self.banner = m.message
            if log.isEnabledFor(logging.INFO):
                log.info("Server banner [{}].".format(m.message))

        if packet_type == mnp.SSH_MSG_USERAUTH_SUCCESS:
            if log.isEnabledFor(logging.INFO):
                log.info("User [{}] authenticated with [{}]."\
                    .format(user_name, method))
            return AuthResult.success

        if packet_type == mnp.SSH_MSG_USERAUTH_FAILURE:
            m = mnp.SshUserauthFailureMessage(pkt)
            self.allowed_methods = m.auths
            self.partial_success = m.partial_success
            if log.isEnabledFor(logging.INFO):
                log.info("Authentication with [{}] failed (can_continue=[{}],"\
                    " partial_success=[{}])."\
                        .format(method, ",".join(m.auths), m.partial_success))
            return AuthResult.failure

        if packet_type == mnp.SSH_MSG_USERAUTH_PASSWD_CHANGEREQ:
            if method == "password":
                m = mnp.SshUserauthPasswdChangereqMessage(pkt)
                self.prompt = m.prompt
            log.info("Server needs more information to authenticate.")
            return AuthResult.need_more_info

        raise SshProtocolError("Unexpected packet type [{}] during user"\
            " authentication.".format(packet_type))

def check_result(result, engine):
    "Raises SshAuthError unless result is AuthResult.success."
    if result is AuthResult.success:
        return

    raise SshAuthError("Authentication {}.".format(result.name),\
        result=result, allowed_methods=engine.allowed_methods,\
        partial_success=engine.partial_success)
