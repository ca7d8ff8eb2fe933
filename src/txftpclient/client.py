# -*- test-case-name: txftpclient.test.test_client -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
A passive-mode FTP client.

L{FTPClient} owns one control connection and sends one command at a time
over it.  Each command's L{Deferred} fires with the server's final
L{Reply}, or fails with L{CommandFailed} if that reply is an error.
Commands which move data (C{LIST}, C{RETR}, C{STOR}) additionally open a
data connection after a C{PASV} and wait for a preliminary "mark" reply
(125 or 150) before using it.

The connection is opened when the client is created and reopened
transparently whenever a command is issued after it was lost.  Before the
first ordinary command on each connection the client learns the server's
features and system type and logs in with the configured credentials.
"""

from __future__ import annotations

import re
from io import BytesIO
from typing import Callable, List, Optional

from attrs import define, evolve, frozen
from constantly import NamedConstant, Names

from twisted.internet import error
from twisted.internet.defer import (
    Deferred,
    fail,
    inlineCallbacks,
    maybeDeferred,
    succeed,
)
from twisted.internet.protocol import ClientFactory
from twisted.internet.task import LoopingCall
from twisted.logger import Logger
from twisted.protocols import basic
from twisted.python.failure import Failure
from twisted.python.filepath import FilePath

from txftpclient._data import (
    DataChannel,
    PassiveEndpoint,
    _PassiveConnectionFactory,
    decodePassiveReply,
)
from txftpclient._events import EventSource
from txftpclient._source import OpenedSource, sourceFor
from txftpclient.error import (
    AuthenticationError,
    BadResponse,
    CommandFailed,
    ConnectionLost,
    EmptyListingError,
    MarkMismatchError,
    TransferError,
)
from txftpclient.listing import ListingEntry, normalizeName, parseListing
from txftpclient.reply import MarkSpec, Reply, ReplyDecoder

__all__ = [
    "ConnectionConfig",
    "FTPClient",
    "FTPCommand",
    "FTPControlProtocol",
    "PassiveEndpoint",
    "TransferAction",
    "TransferProgress",
    "parseFeatures",
]

# Seconds
TIMEOUT = 10 * 60
IDLE_TIME = 30

# Commands which may be sent before the client has logged in.
_bootstrapCommand = re.compile(r"^(feat|syst|user|pass)\b", re.IGNORECASE)

_transferMarks = MarkSpec({125, 150}, 226)

# Listing text which gives away a server whose STAT cannot list directories.
_statlessSystems = ("hummingbird",)



def _maybeGlobalReactor(maybeReactor):
    """
    @return: the argument, or the global reactor if the argument is L{None}.
    """
    if maybeReactor is None:
        from twisted.internet import reactor

        return reactor
    return maybeReactor



def _redact(action: str) -> str:
    if action[:5].upper() == "PASS ":
        return "PASS <hidden>"
    return action



def parseFeatures(text: str) -> frozenset:
    """
    Extract the feature names from the text of a C{FEAT} reply.

    The first and last lines frame the list and are dropped; every other
    line names one feature, which is lower-cased.
    """
    lines = re.split(r"\r\n|\n", text)[1:-1]
    return frozenset(
        line.strip().lower() for line in lines if line.strip())



@define
class ConnectionConfig:
    """
    Where to connect and how to log in.

    @ivar connectFactory: A callable with the signature of
        L{IReactorTCP.connectTCP}, used for both control and data
        connections, or L{None} for the reactor's own.
    @ivar useList: Start out listing directories with C{LIST} rather than
        C{STAT}.
    @ivar timeout: Seconds a data connection may stay idle.
    @ivar completionGrace: Seconds a data connection may stay open after the
        server reported the transfer complete.
    """

    host: str = "localhost"
    port: int = 21
    user: str = "anonymous"
    password: str = "@anonymous"
    connectFactory: Optional[Callable] = None
    useList: bool = False
    timeout: float = TIMEOUT
    completionGrace: float = 1



@define
class _ConnectionState:
    authenticated: bool = False
    authenticating: bool = False
    features: Optional[frozenset] = None
    system: Optional[str] = None
    useList: bool = False
    type: Optional[str] = None



class TransferAction(Names):
    GET = NamedConstant()
    PUT = NamedConstant()



@frozen
class TransferProgress:
    """
    How far an upload or download has got.

    @ivar totalSize: The size of the whole transfer, or 0 if it is unknown.
    """

    filename: str
    action: NamedConstant
    totalSize: int
    transferred: int



class FTPCommand:
    """
    One command waiting in, or being served by, the command queue.

    @ivar deferred: Fires with the final L{Reply}.
    @ivar expectsMark: The L{MarkSpec} this command waits for, or L{None}.
    @ivar markDeferred: Fires with the mark L{Reply}, if one arrives.  It
        never fails.
    @ivar marked: Whether a mark has been received.
    @ivar bootstrap: Whether the command is part of logging in, and so may
        be sent before the client is authenticated.
    """

    def __init__(self, action: str, expectsMark: Optional[MarkSpec] = None,
                 bootstrap: bool = False) -> None:
        self.action = action
        self.expectsMark = expectsMark
        self.bootstrap = bootstrap
        self.deferred: Deferred[Reply] = Deferred()
        self.markDeferred: Deferred[Reply] = Deferred()
        self.marked = False


    def __repr__(self) -> str:
        return "<FTPCommand %r>" % (_redact(self.action),)


    def mark(self, reply: Reply) -> None:
        if self.marked:
            return
        self.marked = True
        self.markDeferred.callback(reply)


    def complete(self, reply: Reply) -> None:
        if reply.isError:
            self.deferred.errback(CommandFailed.fromReply(reply))
        else:
            self.deferred.callback(reply)


    def fail(self, failure) -> None:
        self.deferred.errback(failure)



class FTPControlProtocol(basic.LineReceiver):
    """
    The control connection.  Lines are framed into replies and handed to the
    L{FTPClient} that created this protocol.
    """

    delimiter = b"\n"
    encoding = "utf-8"

    def __init__(self, client: FTPClient) -> None:
        self.client = client
        self.decoder = ReplyDecoder()


    def connectionMade(self):
        self.client._controlConnectionMade(self)


    def lineReceived(self, line):
        text = line.decode(self.encoding, "replace").rstrip("\r")
        try:
            reply = self.decoder.lineReceived(text)
        except BadResponse:
            self.client._decodingFailed(self, Failure())
            return
        if reply is not None:
            self.client._replyReceived(self, reply)


    def sendCommand(self, action: str) -> None:
        self.transport.write(action.encode(self.encoding) + b"\r\n")


    def connectionLost(self, reason):
        self.connected = False
        self.decoder.reset()
        self.client._controlConnectionLost(self, reason)



class _ControlConnectionFactory(ClientFactory):
    noisy = False

    def __init__(self, protocol):
        self.protocol = protocol


    def buildProtocol(self, ignored):
        self.protocol.factory = self
        return self.protocol


    def clientConnectionFailed(self, connector, reason):
        self.protocol.client._controlConnectionFailed(self.protocol, reason)



class FTPClient:
    """
    A passive-mode FTP client.

    Observers registered with L{addObserver} are told about these events:

        - C{"connect"}: the control connection was made.
        - C{"data"}: a L{Reply} arrived on the control connection.
        - C{"error"}: a L{Failure} from the control connection.
        - C{"timeout"}: a L{DataChannel} timed out.
        - C{"progress"}: a L{TransferProgress} for an upload or download.

    @ivar config: The L{ConnectionConfig}.
    @ivar state: What this client knows about its current connection and the
        server behind it.
    """

    _log = Logger()

    def __init__(self, host="localhost", port=21, user="anonymous",
                 password="@anonymous", connectFactory=None, useList=False,
                 timeout=TIMEOUT, completionGrace=1, reactor=None):
        self.config = ConnectionConfig(
            host=host,
            port=port,
            user=user,
            password=password,
            connectFactory=connectFactory,
            useList=useList,
            timeout=timeout,
            completionGrace=completionGrace,
        )
        self.state = _ConnectionState(useList=useList)
        self._reactor = _maybeGlobalReactor(reactor)
        self._events = EventSource()
        self._queue: List[FTPCommand] = []
        self._unsent: List[FTPCommand] = []
        self._inProgress = False
        self._ignoreCode: Optional[int] = None
        self._protocol: Optional[FTPControlProtocol] = None
        self._connector = None
        self._connectWaiters: Optional[List[Deferred]] = None
        self._authWaiters: Optional[List[FTPCommand]] = None
        self._loginWaiters: List[Deferred] = []
        self._passiveChannel: Optional[DataChannel] = None
        self._keepAlive: Optional[LoopingCall] = None
        self._createConnection()


    def _connect(self, host, port, factory):
        connect = self.config.connectFactory
        if connect is None:
            connect = self._reactor.connectTCP
        return connect(host, port, factory)


    # Events
    def addObserver(self, event: str, observer: Callable[..., object]) -> None:
        """
        Call C{observer} whenever C{event} happens.  See L{FTPClient} for the
        events and their arguments.
        """
        self._events.addObserver(event, observer)


    def removeObserver(self, event: str, observer: Callable[..., object]) -> None:
        self._events.removeObserver(event, observer)


    # Control connection
    def _isWritable(self) -> bool:
        protocol = self._protocol
        return (protocol is not None and protocol.connected
                and not protocol.transport.disconnecting)


    def _createConnection(self):
        old = self._protocol
        if old is not None:
            self._protocol = None
            self._dropConnection(
                ConnectionLost("Control connection was replaced"))
            if old.connected:
                old.transport.abortConnection()
        self.state.authenticated = False
        self.state.type = None
        self._connectWaiters = []
        protocol = FTPControlProtocol(self)
        self._protocol = protocol
        self._log.info(
            "Connecting to {host}:{port}",
            host=self.config.host, port=self.config.port)
        self._connector = self._connect(
            self.config.host, self.config.port,
            _ControlConnectionFactory(protocol))


    def _controlConnectionMade(self, protocol):
        if protocol is not self._protocol:
            protocol.transport.loseConnection()
            return
        self._log.info(
            "Connected to {host}:{port}",
            host=self.config.host, port=self.config.port)
        waiters, self._connectWaiters = self._connectWaiters or [], None
        unsent, self._unsent = self._unsent, []
        self._events.dispatch("connect")
        for command in unsent:
            self._runCommand(command)
        for d in waiters:
            d.callback(None)
        self._sendNextCommand()


    def _controlConnectionFailed(self, protocol, reason):
        if protocol is not self._protocol:
            return
        self._log.warn(
            "Could not connect to {host}:{port}: {reason}",
            host=self.config.host, port=self.config.port,
            reason=reason.getErrorMessage())
        self._protocol = None
        waiters, self._connectWaiters = self._connectWaiters or [], None
        unsent, self._unsent = self._unsent, []
        self._events.dispatch("error", reason)
        for command in unsent:
            command.fail(reason)
        for d in waiters:
            d.errback(reason)


    def _controlConnectionLost(self, protocol, reason):
        if protocol is not self._protocol:
            return
        self._log.info(
            "Connection to {host}:{port} lost: {reason}",
            host=self.config.host, port=self.config.port,
            reason=reason.getErrorMessage())
        if not reason.check(error.ConnectionDone):
            self._events.dispatch("error", reason)
        self._dropConnection(ConnectionLost("FTP connection lost", reason))


    def _decodingFailed(self, protocol, failure):
        if protocol is not self._protocol:
            return
        self._log.warn(
            "Ignoring undecodable reply line: {error}",
            error=failure.getErrorMessage())
        self._events.dispatch("error", failure)


    def _dropConnection(self, reason):
        """
        Forget the control connection.  Only the command in flight fails
        with C{reason}; commands not sent yet, including those waiting for
        the login sequence, go out on the next connection.
        """
        queue, self._queue = self._queue, []
        waiting, self._authWaiters = self._authWaiters or [], None
        inFlight = queue.pop(0) if self._inProgress and queue else None
        self._unsent.extend(queue + waiting)
        self._inProgress = False
        self._ignoreCode = None
        if inFlight is not None:
            inFlight.fail(Failure(reason))


    def _abandonCommands(self, reason):
        queue, self._queue = self._queue + self._unsent, []
        self._unsent = []
        self._inProgress = False
        self._ignoreCode = None
        for command in queue:
            command.fail(Failure(reason))


    # Command pipeline
    def execute(self, action: str, expectsMark: Optional[MarkSpec] = None
                ) -> Deferred[Reply]:
        """
        Send C{action} to the server once every command issued before it has
        been answered.

        @param expectsMark: The preliminary replies the command waits for
            before its final reply, for commands which use a data
            connection.

        @return: A L{Deferred} which fires with the final L{Reply}, or fails
            with L{CommandFailed} if the server answers with an error.
        """
        command = FTPCommand(action, expectsMark)
        self._submit(command)
        return command.deferred


    def raw(self, verb: str, *params) -> Deferred[Reply]:
        """
        Execute C{verb} with C{params} separated by spaces.
        """
        action = " ".join((verb,) + tuple(str(p) for p in params)).strip()
        return self.execute(action)


    def _submit(self, command):
        if not self._isWritable() and self._connectWaiters is None:
            self._createConnection()
        if self._isWritable():
            self._runCommand(command)
        elif self._connectWaiters is not None:
            self._connectWaiters.append(
                Deferred().addCallbacks(
                    lambda ignored: self._runCommand(command), command.fail))
        else:
            # The connection attempt failed before connectFactory returned.
            command.fail(Failure(ConnectionLost(
                "Could not connect to %s:%d"
                % (self.config.host, self.config.port))))


    def _runCommand(self, command):
        if (self.state.authenticated or command.bootstrap
                or _bootstrapCommand.match(command.action)):
            self._enqueue(command)
            return
        if self._authWaiters is not None:
            self._authWaiters.append(command)
            return
        self._authWaiters = [command]
        d = self.getFeatures()
        d.addCallback(lambda ignored: self._loginForBootstrap())
        d.addCallbacks(self._bootstrapSucceeded, self._bootstrapFailed)


    def _loginForBootstrap(self):
        if self.state.authenticated:
            return None
        if self.state.authenticating:
            d = Deferred()
            self._loginWaiters.append(d)
            return d
        return self.auth(self.config.user, self.config.password)


    def _bootstrapSucceeded(self, ignored):
        waiters, self._authWaiters = self._authWaiters or [], None
        for command in waiters:
            self._enqueue(command)


    def _bootstrapFailed(self, reason):
        self._log.warn(
            "Could not log in to {host}: {error}",
            host=self.config.host, error=reason.getErrorMessage())
        waiters, self._authWaiters = self._authWaiters or [], None
        for command in waiters:
            command.fail(reason)


    def _enqueue(self, command):
        self._queue.append(command)
        self._sendNextCommand()


    def _sendNextCommand(self):
        if self._inProgress or not self._queue or not self._isWritable():
            return
        command = self._queue[0]
        self._inProgress = True
        self._log.debug("<- {action}", action=_redact(command.action))
        self._protocol.sendCommand(command.action)


    def _replyReceived(self, protocol, reply):
        if protocol is not self._protocol:
            return
        self._log.debug("-> {text}", text=reply.text)
        self._events.dispatch("data", reply)
        if not self._queue:
            if reply.code == self._ignoreCode:
                self._ignoreCode = None
            return
        if reply.code == 220:
            return

        command = self._queue[0]
        if reply.isMark:
            expected = command.expectsMark
            if expected is None or reply.code not in expected.marks:
                return
            if expected.ignore is not None:
                self._ignoreCode = expected.ignore
            command.mark(reply)
            return

        if reply.code == self._ignoreCode:
            self._ignoreCode = None
            if not command.marked:
                return

        # A marked command answered with another code leaves the ignore
        # code armed for the late completion reply.
        del self._queue[0]
        self._inProgress = False
        command.complete(reply)
        self._sendNextCommand()


    # Logging in
    def getFeatures(self) -> Deferred[frozenset]:
        """
        Learn the server's features and system type, unless already known.

        @return: A L{Deferred} which fires with the L{frozenset} of
            lower-cased feature names.
        """
        if self.state.features is not None:
            return succeed(self.state.features)
        d = self.raw("FEAT")
        d.addCallbacks(self._gotFeatures, self._featuresRefused)
        d.addCallback(lambda ignored: self.raw("SYST"))
        d.addCallbacks(self._gotSystem, self._systemRefused)
        d.addCallback(lambda ignored: self.state.features)
        return d


    def _gotFeatures(self, reply):
        self.state.features = parseFeatures(reply.text)


    def _featuresRefused(self, reason):
        reason.trap(CommandFailed)
        self._log.info(
            "Server does not support FEAT: {error}",
            error=reason.getErrorMessage())
        self.state.features = frozenset()


    def _gotSystem(self, reply):
        if reply.code == 215:
            self.state.system = reply.text.lower()


    def _systemRefused(self, reason):
        reason.trap(CommandFailed)
        self._log.info(
            "Server does not support SYST: {error}",
            error=reason.getErrorMessage())


    def hasFeat(self, feature: str) -> bool:
        """
        Whether the server listed C{feature} in its C{FEAT} reply.
        """
        features = self.state.features
        return bool(feature) and features is not None and (
            feature.lower() in features)


    def auth(self, user: Optional[str] = None,
             password: Optional[str] = None) -> Deferred[Reply]:
        """
        Log in.

        On success the credentials replace the configured ones, and the
        transfer type is set to binary.

        @return: A L{Deferred} which fires with the reply to C{PASS}, or
            fails with L{AuthenticationError}.
        """
        if self.state.authenticating:
            return fail(
                AuthenticationError("This client is already authenticating"))
        if user is None:
            user = self.config.user
        if password is None:
            password = self.config.password
        self.state.authenticating = True
        d = self._login(user, password)
        d.addBoth(self._loginFinished)
        return d


    @inlineCallbacks
    def _login(self, user, password):
        reply = yield self.raw("USER", user).addErrback(
            self._rejected, "Invalid username")
        if reply.code not in (230, 331, 332):
            raise AuthenticationError("Invalid username")

        reply = yield self.raw("PASS", password).addErrback(
            self._rejected, "Invalid password")
        if reply.code == 332:
            command = FTPCommand("ACCT", bootstrap=True)
            self._submit(command)
            account = yield command.deferred.addErrback(
                self._rejected, "Invalid account")
            if account.code not in (230, 202):
                raise AuthenticationError("Invalid account")
        elif reply.code not in (230, 202):
            raise AuthenticationError("Invalid password")

        self.state.authenticated = True
        self.config.user = user
        self.config.password = password
        self._log.info("Logged in to {host} as {user}",
                       host=self.config.host, user=user)
        yield self.setType("I")
        return reply


    def _rejected(self, reason, message):
        reason.trap(CommandFailed)
        raise AuthenticationError(message) from reason.value


    def _loginFinished(self, result):
        self.state.authenticating = False
        waiters, self._loginWaiters = self._loginWaiters, []
        for d in waiters:
            if isinstance(result, Failure):
                d.errback(result)
            else:
                d.callback(result)
        return result


    def setType(self, type: str) -> Deferred[Optional[Reply]]:
        """
        Set the transfer type, C{"A"} for ASCII or C{"I"} for binary.

        @return: A L{Deferred} which fires with the server's reply, or with
            L{None} if the type was already set.
        """
        type = type.upper()
        if self.state.type == type:
            return succeed(None)

        def typeSet(reply):
            self.state.type = type
            return reply

        return self.raw("TYPE", type).addCallback(typeSet)


    # Data connections
    def getPasvSocket(self) -> Deferred[DataChannel]:
        """
        Ask the server for a passive endpoint and start connecting to it.

        Any data connection opened by an earlier call is torn down.

        @return: A L{Deferred} which fires with the L{DataChannel} as soon as
            the connection attempt has started.
        """
        return self.raw("PASV").addCallback(self._openPassiveChannel)


    def _openPassiveChannel(self, reply):
        endpoint = decodePassiveReply(reply.text, self.config.host)
        previous = self._passiveChannel
        if previous is not None:
            self._log.warn(
                "New passive connection to {host}:{port} replaces {previous}",
                host=endpoint.host, port=endpoint.port, previous=previous)
            previous.supersede()
        channel = DataChannel(endpoint, self.config.timeout, self._reactor)
        channel.onTimeout = self._dataTimedOut
        self._passiveChannel = channel
        channel.whenClosed().addCallback(self._dataChannelClosed, channel)
        channel.connector = self._connect(
            endpoint.host, endpoint.port, _PassiveConnectionFactory(channel))
        return channel


    def _dataChannelClosed(self, ignored, channel):
        if self._passiveChannel is channel:
            self._passiveChannel = None


    def _dataTimedOut(self, channel):
        self._events.dispatch("timeout", channel)


    def _openTransfer(self, channel: DataChannel, action: str
                      ) -> Deferred[DataChannel]:
        """
        Issue the data command C{action} for C{channel}.

        The command's final reply completes the channel.

        @return: A L{Deferred} which fires with C{channel} once the server
            sends a mark, or fails if the command or channel fails first, in
            which case the channel is destroyed.
        """
        command = FTPCommand(action, _transferMarks)
        ready = Deferred()

        def marked(reply):
            if not ready.called:
                ready.callback(channel)

        def finished(result):
            if not command.marked:
                if not isinstance(result, Failure):
                    result = Failure(MarkMismatchError(result))
                channel.complete(result)
                channel.destroy()
            else:
                channel.complete(result)

        def failedEarly(reason):
            if not ready.called:
                channel.destroy()
                ready.errback(reason)

        command.markDeferred.addCallback(marked)
        command.deferred.addBoth(finished)
        channel.whenCompleted().addErrback(failedEarly)
        self._submit(command)
        return ready


    def _awaitTransfer(self, channel):
        """
        Wait for the final reply of the command using C{channel}, then for
        the data connection to close.
        """

        def drain(reply):
            return channel.whenDrained(self.config.completionGrace).addCallback(
                lambda ignored: reply)

        def failed(reason):
            channel.destroy()
            return reason

        return channel.whenCompleted().addCallbacks(drain, failed)


    def getGetSocket(self, path: str) -> Deferred[DataChannel]:
        """
        Start downloading C{path}.

        @return: A L{Deferred} which fires with a live L{DataChannel} once
            the server has started sending.
        """
        d = self.getPasvSocket()
        d.addCallback(self._openTransfer, "RETR " + path)
        return d


    def getPutSocket(self, source: OpenedSource, path: str) -> Deferred[Reply]:
        """
        Upload the stream of C{source} to C{path}.

        @return: A L{Deferred} which fires with the final reply to C{STOR}.
        """
        d = self.getPasvSocket()
        d.addCallback(self._openTransfer, "STOR " + path)
        d.addCallback(self._upload, source, path)

        def closeSource(result):
            source.close()
            return result

        return d.addBoth(closeSource)


    def _upload(self, channel, source, path):
        def wrote(channel):
            self._progress(path, TransferAction.PUT, source.totalSize,
                           channel.bytesWritten)

        def sendFailed(reason):
            self._log.warn(
                "Reading the upload for {path} failed: {error}",
                path=path, error=reason.getErrorMessage())
            channel.complete(Failure(TransferError(
                "Could not read upload source: " + reason.getErrorMessage())))
            channel.destroy()

        def produce(channel):
            return basic.FileSender().beginFileTransfer(source.stream, channel)

        channel.onWrite = wrote
        sent = channel.whenConnected().addCallback(produce)
        sent.addCallbacks(lambda ignored: channel.finish(), sendFailed)
        return self._awaitTransfer(channel)


    def _progress(self, filename, action, totalSize, transferred):
        self._events.dispatch(
            "progress",
            TransferProgress(filename, action, totalSize, transferred))


    # Operations
    def get(self, remotePath: str, localPath=None) -> Deferred:
        """
        Download C{remotePath}.

        @param localPath: A local path to write the file to, or L{None} to
            keep it in memory.

        @return: A L{Deferred} which fires with the contents as L{bytes}, or
            with C{localPath} if one was given.
        """
        d = self.getGetSocket(remotePath)
        d.addCallback(self._download, remotePath, localPath)
        return d


    def _download(self, channel, remotePath, localPath):
        if localPath is None:
            output = BytesIO()
        else:
            try:
                output = FilePath(localPath).open("wb")
            except OSError:
                channel.destroy()
                raise

        def received(data):
            output.write(data)
            self._progress(remotePath, TransferAction.GET, 0, channel.bytesRead)

        def finished(result):
            if localPath is not None:
                output.close()
            if isinstance(result, Failure):
                return result
            if localPath is None:
                return output.getvalue()
            return localPath

        channel.deliverTo(received)
        return self._awaitTransfer(channel).addBoth(finished)


    def put(self, source, destination: str) -> Deferred[Reply]:
        """
        Upload C{source} to C{destination}.

        @param source: L{bytes}; a local path as a L{str} or L{FilePath}; a
            readable binary file object, which is not closed afterwards; or
            any L{IUploadSource} provider.

        @return: A L{Deferred} which fires with the final reply to C{STOR}.
        """
        def openUpload(upload):
            self._log.info(
                "Uploading {source} to {path}",
                source=upload.description, path=destination)
            return upload.open()

        d = maybeDeferred(sourceFor, source)
        d.addCallback(openUpload)
        d.addCallback(self.getPutSocket, destination)
        return d


    def list(self, path: str = "") -> Deferred[str]:
        """
        Retrieve the listing of C{path} with C{LIST}.

        @return: A L{Deferred} which fires with the raw listing text, or
            fails with L{EmptyListingError} if the server sent nothing.
        """
        d = self.getPasvSocket()
        d.addCallback(self._openTransfer, ("LIST " + path).strip())
        d.addCallback(self._readListing, path)
        return d


    def _readListing(self, channel, path):
        chunks: List[bytes] = []
        channel.deliverTo(chunks.append)

        def gotListing(reply):
            listing = b"".join(chunks).decode(
                FTPControlProtocol.encoding, "replace")
            if not listing:
                raise EmptyListingError(path)
            return listing

        return self._awaitTransfer(channel).addCallback(gotListing)


    @inlineCallbacks
    def ls(self, path: str):
        """
        List the entries of C{path}.

        C{STAT} is tried first, as it needs no data connection.  Servers
        which cannot list that way are remembered and listed with C{LIST}
        from then on.

        @return: A L{Deferred} which fires with a L{list} of
            L{ListingEntry}.
        """
        if not self.state.useList:
            try:
                reply = yield self.raw("STAT", path)
            except CommandFailed as e:
                if not (e.code in (500, 502) or self._isStatless()):
                    raise
                self._log.info(
                    "{host} cannot list with STAT, using LIST",
                    host=self.config.host)
                self.state.useList = True
            else:
                return self._entries(reply.text)
        listing = yield self.list(path)
        return self._entries(listing)


    def _isStatless(self):
        system = self.state.system or ""
        return any(name in system for name in _statlessSystems)


    def _entries(self, text) -> List[ListingEntry]:
        return [evolve(entry, name=normalizeName(entry.name))
                for entry in parseListing(text)]


    def rename(self, fromPath: str, toPath: str) -> Deferred[Reply]:
        """
        Rename C{fromPath} to C{toPath}.

        @return: A L{Deferred} which fires with the reply to C{RNTO}.
        """
        d = self.raw("RNFR", fromPath)
        d.addCallback(lambda ignored: self.raw("RNTO", toPath))
        return d


    def keepAlive(self, interval: Optional[float] = None) -> None:
        """
        Send a C{NOOP} every C{interval} seconds, replacing any earlier
        keep-alive.
        """
        self._stopKeepAlive()
        call = LoopingCall(self._noop)
        call.clock = self._reactor
        self._keepAlive = call
        call.start(interval or IDLE_TIME, now=False)


    def _noop(self):
        self.raw("NOOP").addErrback(self._keepAliveFailed)


    def _keepAliveFailed(self, reason):
        self._log.warn(
            "Keep-alive NOOP failed: {error}",
            error=reason.getErrorMessage())


    def _stopKeepAlive(self):
        call, self._keepAlive = self._keepAlive, None
        if call is not None and call.running:
            call.stop()


    def destroy(self) -> None:
        """
        Close both connections and forget everything learned from the
        server.  Commands still waiting fail with L{ConnectionLost}.

        Issuing another command afterwards opens a new connection.
        """
        self._stopKeepAlive()
        protocol, self._protocol = self._protocol, None
        waiters, self._connectWaiters = self._connectWaiters or [], None
        self._abandonCommands(ConnectionLost("FTP client destroyed"))
        for d in waiters:
            d.errback(ConnectionLost("FTP client destroyed"))

        if protocol is not None:
            if protocol.connected:
                protocol.transport.loseConnection()
            elif self._connector is not None:
                self._connector.disconnect()
        self._connector = None

        channel, self._passiveChannel = self._passiveChannel, None
        if channel is not None:
            channel.destroy()

        self.state.features = None
        self.state.system = None
        self.state.authenticated = False
        self.state.type = None
