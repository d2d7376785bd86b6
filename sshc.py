# Copyright (c) 2014-2015  Sam Maloney.
# License: GPL v2.

import llog

import argparse
import getpass
import logging
import os
import sys

import hostkey
import sshclient
import userauth
from sshexception import SshException, SshWouldBlock, SshChannelClosedError

log = logging.getLogger(__name__)

def main():
    try:
        r = _main()
    except KeyboardInterrupt:
        log.warning("Got KeyboardInterrupt; shutting down.")
        r = 130
    except SshException as e:
        log.exception("Connection failed:")
        print("sshc: {}".format(e), file=sys.stderr)
        r = 255

    sys.exit(r)

def _parse_args():
    parser = argparse.ArgumentParser()
    parser.add_argument("-l", dest="logconf",\
        help="Specify alternate logging.ini [IF SPECIFIED, THIS MUST BE THE"\
            " FIRST PARAMETER!].")
    parser.add_argument("-p", "--port", type=int, default=22,\
        help="Port to connect to on the remote host.")
    parser.add_argument("-u", "--user",\
        help="User to log in as. The default is the local user name.")
    parser.add_argument("-i", dest="identity",\
        help="OpenSSH format ssh-ed25519 private key for public key"\
            " authentication.")
    parser.add_argument("--password-env",\
        help="Take the password from this environment variable instead of"\
            " prompting.")
    parser.add_argument("-t", dest="pty", action="store_true",\
        help="Request a pseudo terminal.")
    parser.add_argument("--term", default=os.environ.get("TERM", "xterm"),\
        help="Terminal type sent with the pty request.")
    parser.add_argument("--host-key", action="append",\
        help="Pin the server to this \"ssh-ed25519 AAAA...\" public key line;"\
            " may be given more than once.")
    parser.add_argument("--insecure", action="store_true",\
        help="Accept any host key WITHOUT VERIFICATION.")
    parser.add_argument("host")
    parser.add_argument("command", nargs=argparse.REMAINDER)

    return parser.parse_args()

def _host_key_policy(args):
    if args.insecure:
        return hostkey.AcceptAnyHostKeyPolicy()

    if args.host_key:
        return hostkey.HostKeyPolicy(\
            [hostkey.parse_public_key_line(line) for line in args.host_key])

    return hostkey.HostKeyPolicy()

def _authenticate(client, args, user_name):
    if args.identity:
        password = None
        if args.password_env:
            password = os.environ.get(args.password_env)
        key = hostkey.Ed25519Key.from_private_key_file(args.identity,\
            password)
        result = client.authenticate_publickey(user_name, key)
    else:
        if args.password_env:
            password = os.environ.get(args.password_env)
            if password is None:
                raise SshException("Environment variable [{}] is not set."\
                    .format(args.password_env))
        else:
            password = getpass.getpass("{}@{}'s password: "\
                .format(user_name, args.host))
        result = client.authenticate_password(user_name, password)

    if client.auth.banner:
        print(client.auth.banner, file=sys.stderr)

    userauth.check_result(result, client.auth)

def _copy_output(client, local_id):
    out = sys.stdout.buffer

    while True:
        try:
            data = client.recv(local_id)
        except SshWouldBlock:
            continue
        except SshChannelClosedError:
            break

        if not data:
            break

        out.write(data)
        out.flush()

def _main():
    args = _parse_args()

    user_name = args.user or getpass.getuser()

    client = sshclient.SshClient(host_key_policy=_host_key_policy(args))

    with client:
        client.connect(args.host, args.port)

        _authenticate(client, args, user_name)

        local_id = client.open_session()

        if args.pty:
            client.request_pty(local_id, args.term)

        if args.command:
            client.exec(local_id, " ".join(args.command))
        else:
            client.request_shell(local_id)
            data = sys.stdin.buffer.read()
            if data:
                client.sendall(local_id, data)
            client.send_eof(local_id)

        _copy_output(client, local_id)

        client.wait_closed(local_id)

        status = client.exit_status(local_id)

    if log.isEnabledFor(logging.INFO):
        log.info("Remote exit status [{}].".format(status))

    return 255 if status is None else status

if __name__ == "__main__":
    main()
