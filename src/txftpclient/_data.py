# -*- test-case-name: txftpclient.test.test_data -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Passive-mode data connections.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional

from attrs import frozen
from zope.interface import implementer

from twisted.internet import error, protocol
from twisted.internet.defer import Deferred, fail, succeed
from twisted.internet.interfaces import IConsumer
from twisted.logger import Logger
from twisted.protocols.policies import TimeoutMixin
from twisted.python.failure import Failure

from txftpclient.error import PassiveModeError, TransferError

_pasvPattern = re.compile(r"([-\d]+,[-\d]+,[-\d]+,[-\d]+),([-\d]+),([-\d]+)")

# Servers behind NAT commonly report one of these instead of an address the
# client can reach.
_unroutable = frozenset(["127.0.0.1", "0.0.0.0"])

_notYet = object()



@frozen
class PassiveEndpoint:
    host: str
    port: int



def decodePassiveReply(text: str, controlHost: str) -> PassiveEndpoint:
    """
    Decode the host and port from the text of a C{227} reply such as::

        227 Entering Passive Mode (192,168,1,2,19,136)

    @param controlHost: The host of the control connection, substituted for
        loopback and unspecified addresses.

    @raise PassiveModeError: If C{text} holds no host/port encoding.
    """
    match = _pasvPattern.search(text)
    if match is None:
        raise PassiveModeError("Bad passive host/port combination")
    host = match.group(1).replace(",", ".")
    if host in _unroutable:
        host = controlHost
    port = (int(match.group(2)) & 255) * 256 + (int(match.group(3)) & 255)
    return PassiveEndpoint(host, port)



@implementer(IConsumer)
class DataChannel(protocol.Protocol, TimeoutMixin):
    """
    One data connection, opened after a C{PASV} reply.

    Received bytes are buffered until a receiver is given to L{deliverTo}.
    The channel is also an L{IConsumer} so an upload can be produced into
    it.

    A channel completes once: with the final control-connection reply of the
    command it serves, or with a failure if the connection could not be
    opened, timed out or was torn down first.

    @ivar bytesRead: Number of bytes received so far.
    @ivar bytesWritten: Number of bytes sent so far.
    @ivar destroyed: Whether L{destroy} has been called.
    @ivar connector: The L{IConnector} of the connection attempt.
    @ivar onWrite: Called with this channel after every write, or L{None}.
    @ivar onTimeout: Called with this channel when it times out, or L{None}.
    """

    connector = None
    onWrite: Optional[Callable[[DataChannel], object]] = None
    onTimeout: Optional[Callable[[DataChannel], object]] = None

    _log = Logger()

    def __init__(self, endpoint: PassiveEndpoint, timeout=None, clock=None):
        self.endpoint = endpoint
        self.bytesRead = 0
        self.bytesWritten = 0
        self.destroyed = False
        self._timeout = timeout
        self._clock = clock
        self._receiver: Optional[Callable[[bytes], object]] = None
        self._buffered: List[bytes] = []
        self._completion = _notYet
        self._completionObservers: List[Deferred] = []
        self._closed = False
        self._closeObservers: List[Deferred] = []
        self._connectObservers: List[Deferred] = []


    def __repr__(self) -> str:
        return "<DataChannel to %s:%d>" % (self.endpoint.host, self.endpoint.port)


    def callLater(self, period, func):
        if self._clock is None:
            return TimeoutMixin.callLater(self, period, func)
        return self._clock.callLater(period, func)


    def connectionMade(self):
        if self.destroyed:
            self.transport.abortConnection()
            return
        self.setTimeout(self._timeout)
        observers, self._connectObservers = self._connectObservers, []
        for d in observers:
            d.callback(self)


    def whenConnected(self) -> Deferred[DataChannel]:
        """
        @return: A L{Deferred} which fires with this channel once it is
            connected, or fails with L{TransferError} if it closes first.
        """
        if self.connected:
            return succeed(self)
        if self._closed:
            return fail(TransferError("Data connection is closed"))
        d = Deferred()
        self._connectObservers.append(d)
        return d


    def dataReceived(self, data):
        self.resetTimeout()
        self.bytesRead += len(data)
        if self._receiver is None:
            self._buffered.append(data)
        else:
            self._receiver(data)


    def deliverTo(self, receiver: Callable[[bytes], object]) -> None:
        """
        Call C{receiver} with every chunk of data, starting with anything
        received before now.
        """
        self._receiver = receiver
        buffered, self._buffered = self._buffered, []
        for data in buffered:
            receiver(data)


    def connectionLost(self, reason=protocol.connectionDone):
        self.connected = False
        self.setTimeout(None)
        if not reason.check(error.ConnectionDone):
            self.complete(reason)
        self._closedNow()


    def connectionFailed(self, reason: Failure) -> None:
        """
        The connection attempt failed.
        """
        if reason.check(error.ConnectionRefusedError):
            reason = Failure(PassiveModeError(
                "Probably trying a PASV operation while one is in progress",
                reason.value))
        self.complete(reason)
        self._closedNow()


    def timeoutConnection(self):
        self._log.info("{channel} timed out", channel=self)
        if self.onTimeout is not None:
            self.onTimeout(self)
        self.complete(Failure(TransferError("Passive socket timeout")))
        self.transport.loseConnection()


    def supersede(self) -> None:
        """
        A newer C{PASV} replaced this channel: fail whatever it served and
        tear it down.
        """
        self.complete(Failure(PassiveModeError(
            "Passive connection superseded by a newer PASV request")))
        self.destroy()


    # IConsumer
    def write(self, data):
        self.resetTimeout()
        self.transport.write(data)
        self.bytesWritten += len(data)
        if self.onWrite is not None:
            self.onWrite(self)


    def registerProducer(self, producer, streaming):
        self.transport.registerProducer(producer, streaming)


    def unregisterProducer(self):
        self.transport.unregisterProducer()


    def finish(self) -> None:
        """
        Close the connection once everything written has been sent.
        """
        if self.connected:
            self.transport.loseConnection()


    def destroy(self) -> None:
        """
        Tear the connection down immediately, or abandon the connection
        attempt if it has not been made yet.
        """
        self.destroyed = True
        self.setTimeout(None)
        if self.transport is None:
            if self.connector is not None:
                self.connector.disconnect()
            self._closedNow()
        elif self.connected:
            self.transport.abortConnection()


    def complete(self, result) -> None:
        """
        Record the outcome of the transfer.  Only the first call counts.

        @param result: The final L{txftpclient.reply.Reply}, or a L{Failure}.
        """
        if self._completion is not _notYet:
            return
        self._completion = result
        observers, self._completionObservers = self._completionObservers, []
        for d in observers:
            _fire(d, result)


    def whenCompleted(self) -> Deferred:
        """
        @return: A L{Deferred} which fires with the result given to
            L{complete}.
        """
        d = Deferred()
        if self._completion is _notYet:
            self._completionObservers.append(d)
        else:
            _fire(d, self._completion)
        return d


    def whenClosed(self) -> Deferred[None]:
        """
        @return: A L{Deferred} which fires with L{None} once the connection
            is gone or will never be made.
        """
        if self._closed:
            return succeed(None)
        d = Deferred()
        self._closeObservers.append(d)
        return d


    def whenDrained(self, grace: float) -> Deferred[None]:
        """
        Wait up to C{grace} seconds for the server to close the connection,
        then destroy it.
        """
        if self._closed:
            return succeed(None)
        call = self.callLater(grace, self.destroy)

        def closed(result):
            if call.active():
                call.cancel()
            return result

        return self.whenClosed().addCallback(closed)


    def _closedNow(self):
        if self._closed:
            return
        self._closed = True
        pending, self._connectObservers = self._connectObservers, []
        for d in pending:
            d.errback(TransferError("Data connection closed before it opened"))
        observers, self._closeObservers = self._closeObservers, []
        for d in observers:
            d.callback(None)



def _fire(d, result):
    if isinstance(result, Failure):
        d.errback(result)
    else:
        d.callback(result)



class _PassiveConnectionFactory(protocol.ClientFactory):
    noisy = False

    def __init__(self, channel):
        self.channel = channel


    def buildProtocol(self, ignored):
        self.channel.factory = self
        return self.channel


    def clientConnectionFailed(self, connector, reason):
        self.channel.connectionFailed(reason)
