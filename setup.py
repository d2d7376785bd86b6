# Copyright (c) 2014-2015  Sam Maloney.
# License: GPL v2.

from setuptools import setup

modules = [\
    "channel",
    "curve25519",
    "hostkey",
    "kex",
    "kexcurve25519sha256",
    "llog",
    "mutil",
    "packet",
    "sshc",
    "sshcipher",
    "sshclient",
    "sshexception",
    "sshtype",
    "sshwire",
    "transport",
    "userauth"\
]

setup(
    name = "sshc",
    version = "0.1",
    description = "Sequential SSH-2 client protocol engine.",
    py_modules = modules,
    python_requires = ">=3.6",
    install_requires = [\
        "pycryptodome",
        "cryptography>=3.0"\
    ],
    extras_require = {
        "test": ["pytest"],
    },
    entry_points = {
        "console_scripts": ["sshc = sshc:main"],
    }
)
