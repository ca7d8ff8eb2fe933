# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Interface documentation.
"""

from zope.interface import Attribute, Interface



class IUploadSource(Interface):
    """
    Somewhere the bytes of an upload come from.
    """

    description = Attribute(
        "A short human readable name for the source, used in log "
        "messages.")

    def open():
        """
        Prepare the source for reading.

        @return: A L{Deferred} which fires with an
            L{txftpclient._source.OpenedSource}, or fails with
            L{txftpclient.error.TransferError} if the source cannot be read.
        """
