# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

import llog

import socket
import logging

log = logging.getLogger(__name__)

def resolve(hostname):
    "Returns the first address hostname resolves to."
    infos = socket.getaddrinfo(hostname, None, 0, socket.SOCK_STREAM)
    addr = infos[0][4][0]

    if log.isEnabledFor(logging.INFO):
        log.info("Resolved [{}] to [{}].".format(hostname, addr))

    return addr

class TcpTransport(object):
    "Blocking TCP byte stream; the timeout applies to every call."

    def __init__(self, timeout=None):
        self.timeout = timeout
        self.sock = None

    def connect(self, addr, port):
        self.sock = socket.create_connection((addr, port), self.timeout)

        if log.isEnabledFor(logging.INFO):
            log.info("Connected to [{}:{}].".format(addr, port))

    def send(self, data):
        self.sock.sendall(data)

    def recv(self, size=4096):
        return self.sock.recv(size)

    def close(self):
        sock = self.sock
        if sock is None:
            return

        self.sock = None
        sock.close()
