# -*- test-case-name: txftpclient -*-

# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
txftpclient: a passive-mode FTP client for Twisted.

Most users want L{txftpclient.client.FTPClient}.
"""

from txftpclient._version import __version__ as version
from txftpclient.client import ConnectionConfig, FTPClient
from txftpclient.error import (
    AuthenticationError,
    BadResponse,
    CommandFailed,
    ConnectionLost,
    EmptyListingError,
    FTPError,
    MarkMismatchError,
    PassiveModeError,
    TransferError,
)

__version__ = version.short()

__all__ = [
    "AuthenticationError",
    "BadResponse",
    "CommandFailed",
    "ConnectionConfig",
    "ConnectionLost",
    "EmptyListingError",
    "FTPClient",
    "FTPError",
    "MarkMismatchError",
    "PassiveModeError",
    "TransferError",
]
