# Copyright (c) 2014-2015  Sam Maloney.
# License: LGPL

# Disconnect reason codes (RFC 4253 section 11.1).
SSH_DISCONNECT_HOST_NOT_ALLOWED_TO_CONNECT = 1
SSH_DISCONNECT_PROTOCOL_ERROR = 2
SSH_DISCONNECT_KEY_EXCHANGE_FAILED = 3
SSH_DISCONNECT_RESERVED = 4
SSH_DISCONNECT_MAC_ERROR = 5
SSH_DISCONNECT_COMPRESSION_ERROR = 6
SSH_DISCONNECT_SERVICE_NOT_AVAILABLE = 7
SSH_DISCONNECT_PROTOCOL_VERSION_NOT_SUPPORTED = 8
SSH_DISCONNECT_HOST_KEY_NOT_VERIFIABLE = 9
SSH_DISCONNECT_CONNECTION_LOST = 10
SSH_DISCONNECT_BY_APPLICATION = 11
SSH_DISCONNECT_TOO_MANY_CONNECTIONS = 12
SSH_DISCONNECT_AUTH_CANCELLED_BY_USER = 13
SSH_DISCONNECT_NO_MORE_AUTH_METHODS_AVAILABLE = 14
SSH_DISCONNECT_ILLEGAL_USER_NAME = 15

class SshException(Exception):
    """
    Base of every error raised by the engine.

    `fatal` errors leave the connection unusable; the client tears it down
    (sending DISCONNECT with `reason_code` when it still can) before letting
    the exception propagate.
    """

    fatal = False
    reason_code = SSH_DISCONNECT_PROTOCOL_ERROR

# Transport I/O.

class SshTransportError(SshException):
    fatal = True
    reason_code = SSH_DISCONNECT_CONNECTION_LOST

class SshDisconnectedError(SshTransportError):
    "The peer sent SSH_MSG_DISCONNECT."

    def __init__(self, message, peer_reason_code=None, description=None):
        super().__init__(message)
        self.peer_reason_code = peer_reason_code
        self.description = description

# Protocol / framing.

class SshProtocolError(SshException):
    fatal = True
    reason_code = SSH_DISCONNECT_PROTOCOL_ERROR

# Cryptography.

class SshCryptoError(SshException):
    fatal = True
    reason_code = SSH_DISCONNECT_MAC_ERROR

class SshKexError(SshCryptoError):
    reason_code = SSH_DISCONNECT_KEY_EXCHANGE_FAILED

class SshHostKeyError(SshCryptoError):
    reason_code = SSH_DISCONNECT_HOST_KEY_NOT_VERIFIABLE

# Authentication; the connection stays usable.

class SshAuthError(SshException, PermissionError):
    def __init__(self, message, result=None, allowed_methods=None,\
            partial_success=False):
        super().__init__(message)
        self.result = result
        self.allowed_methods = allowed_methods or []
        self.partial_success = partial_success

# Channels; scoped to one channel.

class SshChannelError(SshException):
    pass

class SshChannelOpenError(SshChannelError, PermissionError):
    def __init__(self, message, reason_code=None, description=None):
        super().__init__(message)
        self.open_reason_code = reason_code
        self.description = description

class SshChannelRequestError(SshChannelError):
    pass

class SshChannelClosedError(SshChannelError, BrokenPipeError):
    pass

class SshWouldBlock(SshChannelError, BlockingIOError):
    pass

# API misuse.

class SshInvalidStateError(SshException):
    pass
