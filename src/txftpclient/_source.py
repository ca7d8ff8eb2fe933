# -*- test-case-name: txftpclient.test.test_source -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
The three kinds of upload source accepted by L{FTPClient.put}.

Each variant knows whether it can disclose the size of what it will send:
bytes and local files can, an already-open stream cannot and reports 0.
"""

from __future__ import annotations

import os
from io import BytesIO
from typing import IO, Union

from attrs import frozen
from zope.interface import implementer

from twisted.internet.defer import Deferred, maybeDeferred
from twisted.python.filepath import FilePath

from txftpclient.error import TransferError
from txftpclient.interfaces import IUploadSource



@frozen
class OpenedSource:
    """
    An upload source which is ready to be read.

    @ivar stream: A binary file-like object to read the upload from.
    @ivar totalSize: The number of bytes C{stream} will produce, or 0 if it
        is unknown.
    @ivar owned: Whether the stream was opened on the caller's behalf and
        must be closed once the upload is over.
    """

    stream: IO[bytes]
    totalSize: int
    owned: bool = False


    def close(self) -> None:
        if self.owned:
            self.stream.close()



@implementer(IUploadSource)
@frozen
class BytesSource:
    data: bytes
    description: str = "<bytes>"

    def open(self) -> Deferred[OpenedSource]:
        return maybeDeferred(
            OpenedSource, BytesIO(self.data), len(self.data), True)



@implementer(IUploadSource)
@frozen
class PathSource:
    """
    A file on the local filesystem.
    """

    path: FilePath

    @property
    def description(self) -> str:
        return self.path.path


    def open(self) -> Deferred[OpenedSource]:
        return maybeDeferred(self._open)


    def _open(self):
        if not self.path.exists():
            raise TransferError("Local file doesn't exist.")
        if self.path.isdir():
            raise TransferError("Local path cannot be a directory")
        return OpenedSource(self.path.open("rb"), self.path.getsize(), True)



@implementer(IUploadSource)
@frozen
class StreamSource:
    """
    A stream the caller already opened.  It is read to its end but never
    closed.
    """

    stream: IO[bytes]
    description: str = "<stream>"

    def open(self) -> Deferred[OpenedSource]:
        return maybeDeferred(OpenedSource, self.stream, 0)



def sourceFor(source: Union[IUploadSource, bytes, str, FilePath, IO[bytes]]):
    """
    Turn whatever L{FTPClient.put} was given into an L{IUploadSource}.

    @raise TypeError: If C{source} is none of the supported kinds.
    """
    if IUploadSource.providedBy(source):
        return source
    if isinstance(source, (bytes, bytearray, memoryview)):
        return BytesSource(bytes(source))
    if isinstance(source, FilePath):
        return PathSource(source)
    if isinstance(source, (str, os.PathLike)):
        return PathSource(FilePath(os.fspath(source)))
    if callable(getattr(source, "read", None)):
        return StreamSource(source)
    raise TypeError(
        "Expected source to be bytes, a path or a readable binary stream, "
        "not %r" % (source,))
