# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

import llog

import logging

import kex
import sshcipher
import packet as mnp
from curve25519 import KEY_SIZE
from sshexception import SshKexError

log = logging.getLogger(__name__)

class KexCurve25519Sha256(object):
    name = "curve25519-sha256"

    def __init__(self, protocol):
        self.protocol = protocol
        self.ctx = None

    def run(self):
        "Runs the client side of the exchange; returns the new KeySet."
        p = self.protocol

        ctx = self.ctx = kex.KexContext(p.local_kex_init_message,\
            p.remote_kex_init_message)
        if log.isEnabledFor(logging.DEBUG):
            log.debug("q_c=[{}].".format(ctx.public_key.hex()))

        m = mnp.SshKexEcdhInitMessage()
        m.q_c = ctx.public_key
        m.encode()
        p.write_packet(m)

        p.kex_progress("sent_kex_ecdh_init")

        pkt = p._read_kex_packet(mnp.SSH_MSG_KEX_ECDH_REPLY)

        m = mnp.SshKexEcdhReplyMessage(pkt)

        keys = self._parse_kex_ecdh_reply(m)

        p.kex_progress("received_kex_ecdh_reply")

        m = mnp.SshNewKeysMessage()
        m.encode()
        p.write_packet(m)

        p.init_outbound_encryption(keys)

        p.kex_progress("sent_new_keys")

        pkt = p._read_kex_packet(mnp.SSH_MSG_NEWKEYS)
        mnp.SshNewKeysMessage(pkt)
        log.debug("Received SSH_MSG_NEWKEYS.")

        p.init_inbound_encryption(keys)

        p.kex_progress("received_new_keys")

        return keys

    def _parse_kex_ecdh_reply(self, m):
        p = self.protocol
        ctx = self.ctx

        if len(m.q_s) != KEY_SIZE:
            raise SshKexError("Server ephemeral key is [{}] bytes."\
                .format(len(m.q_s)))

        K = ctx.compute_k(m.q_s)

        if log.isEnabledFor(logging.DEBUG):
            log.debug("K=[{}].".format(K))

        H = ctx.compute_h(p.local_banner, p.remote_banner, m.host_key, m.q_s)

        p.set_K_H(K, H)

        neg = p.negotiated
        keys = kex.derive(K, H, p.session_id,\
            sshcipher.key_size(neg.cipher_c2s),\
            sshcipher.key_size(neg.cipher_s2c))

        log.info("Verifying signature...")
        p.verify_server_key(m.host_key, m.signature)

        return keys
