# -*- test-case-name: txftpclient.test.test_client -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Exceptions raised by L{txftpclient}.
"""


class FTPError(Exception):
    pass



class ConnectionLost(FTPError):
    """
    A command was abandoned because its control connection went away before
    the server answered it.
    """



class BadResponse(FTPError):
    """
    The server sent a line which cannot be framed as an FTP reply.
    """



class CommandFailed(FTPError):
    """
    The server answered a command with an error reply (4xx or 5xx).

    @ivar code: The numeric reply code.
    @type code: L{int}

    @ivar text: The full text of the reply, code included.
    @type text: L{str}

    @ivar reply: The L{txftpclient.reply.Reply} which caused the failure, or
        L{None} if the error was synthesized locally.
    """

    def __init__(self, code, text, reply=None):
        FTPError.__init__(self, text)
        self.code = code
        self.text = text
        self.reply = reply


    @classmethod
    def fromReply(cls, reply):
        return cls(reply.code, reply.text, reply)


    def __str__(self) -> str:
        return self.text or "Unknown FTP error."



class EmptyListingError(CommandFailed):
    """
    A C{LIST} transfer finished without producing any bytes.
    """

    def __init__(self, path):
        CommandFailed.__init__(
            self, 451, "Could not retrieve a file listing for %s." % (path,))
        self.path = path



class AuthenticationError(FTPError):
    pass



class PassiveModeError(FTPError):
    pass



class TransferError(FTPError):
    pass



class MarkMismatchError(TransferError):
    """
    A data command received a final reply where a mark (125 or 150) was
    expected.

    @ivar reply: The unexpected L{txftpclient.reply.Reply}.
    """

    def __init__(self, reply):
        TransferError.__init__(self, "Unexpected command " + reply.text)
        self.reply = reply
