# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Tests for the passive data connections, transfers and listings of
L{txftpclient.client.FTPClient}.
"""

from io import BytesIO

from twisted.internet import error
from twisted.python.failure import Failure
from twisted.python.filepath import FilePath
from twisted.trial.unittest import TestCase

from txftpclient.client import TransferAction, TransferProgress
from txftpclient.error import (
    CommandFailed,
    EmptyListingError,
    MarkMismatchError,
    PassiveModeError,
    TransferError,
)
from txftpclient.listing import FileType
from txftpclient.test.test_client import ClientTestMixin

LISTING_LINE = b"-rw-r--r-- 1 owner group 5 Jan 01 12:00 hello.txt\r\n"


class TransferTestMixin(ClientTestMixin):
    """
    Drive a logged-in L{FTPClient} through data transfers.
    """

    def setUp(self):
        ClientTestMixin.setUp(self)
        self.loggedIn()


    def openPassive(self):
        """
        Answer the client's C{PASV} and complete the data connection.
        """
        self.assertSent("PASV")
        self.serverSends("227 Entering Passive Mode (127,0,0,1,19,136)")
        host, port = self.reactor.tcpClients[-1][:2]
        self.assertEqual((host, port), (self.host, 5000))
        return self.connectData()


    def produce(self, transport):
        """
        Pull everything from the producer registered with C{transport}.
        """
        while transport.producer is not None:
            transport.producer.resumeProducing()


    def download(self, path, chunks, localPath=None):
        """
        Run a complete C{RETR} of C{chunks}.
        """
        d = self.client.get(path, localPath)
        channel, transport = self.openPassive()
        self.assertSent("RETR " + path)
        self.serverSends("150 Opening BINARY mode data connection")
        for chunk in chunks:
            channel.dataReceived(chunk)
        transport.loseConnection()
        self.serverSends("226 Transfer complete")
        return d



class PassiveTests(TransferTestMixin, TestCase):
    """
    Tests for L{FTPClient.getPasvSocket}.
    """

    def test_endpoint(self):
        """
        The data connection goes to the endpoint in the C{PASV} reply, with
        a loopback address replaced by the control connection's host.
        """
        d = self.client.getPasvSocket()
        self.assertSent("PASV")
        self.serverSends("227 Entering Passive Mode (127,0,0,1,19,136)")
        channel = self.successResultOf(d)
        self.assertEqual(
            (channel.endpoint.host, channel.endpoint.port), (self.host, 5000))
        self.assertEqual(
            self.reactor.tcpClients[-1][:2], ("ftp.example.com", 5000))


    def test_unparsable(self):
        """
        A C{PASV} reply without an endpoint fails with L{PassiveModeError}.
        """
        d = self.client.getPasvSocket()
        self.serverSends("227 Entering Passive Mode")
        self.failureResultOf(d, PassiveModeError)
        self.assertEqual(len(self.reactor.tcpClients), 1)


    def test_refused(self):
        """
        C{PASV} being refused fails with L{CommandFailed}.
        """
        d = self.client.getPasvSocket()
        self.serverSends("500 PASV not understood")
        self.failureResultOf(d, CommandFailed)


    def test_superseded(self):
        """
        A new C{PASV} tears down the data connection opened by the previous
        one, failing it with L{PassiveModeError}.
        """
        first = self.client.getPasvSocket()
        self.serverSends("227 Entering Passive Mode (10,0,0,5,19,136)")
        channel = self.successResultOf(first)
        channel, transport = self.connectData()

        self.client.getPasvSocket()
        self.serverSends("227 Entering Passive Mode (10,0,0,5,19,137)")
        self.assertTrue(transport.aborted)
        self.failureResultOf(channel.whenCompleted(), PassiveModeError)
        self.assertIsNot(self.client._passiveChannel, channel)


    def test_closeForgetsChannel(self):
        """
        A closed data connection is no longer tracked.
        """
        d = self.client.getPasvSocket()
        self.serverSends("227 Entering Passive Mode (10,0,0,5,19,136)")
        channel = self.successResultOf(d)
        self.assertIs(self.client._passiveChannel, channel)
        channel, transport = self.connectData()
        transport.loseConnection()
        self.assertIsNone(self.client._passiveChannel)



class GetTests(TransferTestMixin, TestCase):
    """
    Tests for L{FTPClient.get}.
    """

    def test_get(self):
        """
        L{FTPClient.get} fires with the bytes received, once the server
        reports the transfer complete.  Progress is reported per chunk.
        """
        progress = []
        self.client.addObserver("progress", progress.append)
        d = self.client.get("file.txt")
        channel, transport = self.openPassive()
        self.assertSent("RETR file.txt")
        self.serverSends("150 Opening BINARY mode data connection")
        channel.dataReceived(b"hello ")
        channel.dataReceived(b"world")
        transport.loseConnection()
        self.assertNoResult(d)

        self.serverSends("226 Transfer complete")
        self.assertEqual(self.successResultOf(d), b"hello world")
        self.assertEqual(
            progress,
            [TransferProgress("file.txt", TransferAction.GET, 0, 6),
             TransferProgress("file.txt", TransferAction.GET, 0, 11)])
        self.assertIsNone(self.client._passiveChannel)


    def test_dataBeforeMark(self):
        """
        Data arriving before the mark is not lost.
        """
        d = self.client.get("file.txt")
        channel, transport = self.openPassive()
        channel.dataReceived(b"early")
        self.serverSends("150 Opening", "226 Transfer complete")
        transport.loseConnection()
        self.assertEqual(self.successResultOf(d), b"early")


    def test_completionBeforeClose(self):
        """
        After the completion reply the data connection is given a grace
        period to finish, then aborted.
        """
        d = self.client.get("file.txt")
        channel, transport = self.openPassive()
        self.serverSends("150 Opening")
        channel.dataReceived(b"data")
        self.serverSends("226 Transfer complete")
        self.assertNoResult(d)
        self.reactor.advance(1)
        self.assertTrue(transport.aborted)
        self.assertEqual(self.successResultOf(d), b"data")


    def test_toFile(self):
        """
        Given a local path, L{FTPClient.get} writes the file there and fires
        with the path.
        """
        localPath = self.mktemp()
        d = self.download("file.txt", [b"on ", b"disk"], localPath)
        self.assertEqual(self.successResultOf(d), localPath)
        self.assertEqual(FilePath(localPath).getContent(), b"on disk")


    def test_withoutMark(self):
        """
        A completion reply without a mark fails with L{MarkMismatchError}
        and destroys the data connection.
        """
        d = self.client.get("file.txt")
        channel, transport = self.openPassive()
        self.serverSends("226 Transfer complete")
        failure = self.failureResultOf(d, MarkMismatchError)
        self.assertEqual(
            str(failure.value), "Unexpected command 226 Transfer complete")
        self.assertEqual(failure.value.reply.code, 226)
        self.assertTrue(transport.aborted)


    def test_refusedBeforeMark(self):
        """
        An error reply instead of a mark fails with L{CommandFailed} and
        destroys the data connection.
        """
        d = self.client.get("missing.txt")
        channel, transport = self.openPassive()
        self.serverSends("550 No such file")
        failure = self.failureResultOf(d, CommandFailed)
        self.assertEqual(failure.value.code, 550)
        self.assertTrue(transport.aborted)


    def test_failedAfterMark(self):
        """
        An error reply after the mark fails the download.
        """
        d = self.client.get("file.txt")
        channel, transport = self.openPassive()
        self.serverSends("150 Opening", "426 Connection closed")
        self.failureResultOf(d, CommandFailed)
        self.assertTrue(transport.aborted)


    def test_dataConnectionRefused(self):
        """
        A refused data connection fails with L{PassiveModeError}.
        """
        d = self.client.get("file.txt")
        self.serverSends("227 Entering Passive Mode (10,0,0,5,19,136)")
        host, port, factory, timeout, bindAddress = \
            self.reactor.tcpClients[-1]
        factory.clientConnectionFailed(
            None, Failure(error.ConnectionRefusedError()))
        failure = self.failureResultOf(d, PassiveModeError)
        self.assertIn("PASV operation while one is in progress",
                      str(failure.value))
        self.serverSends("425 Can't open data connection")


    def test_timeout(self):
        """
        An idle data connection fails the download with L{TransferError}
        and is reported to C{timeout} observers.
        """
        timeouts = []
        self.client.addObserver("timeout", timeouts.append)
        d = self.client.get("file.txt")
        channel, transport = self.openPassive()
        self.serverSends("150 Opening")
        self.reactor.advance(599)
        self.assertNoResult(d)
        self.reactor.advance(1)
        failure = self.failureResultOf(d, TransferError)
        self.assertEqual(str(failure.value), "Passive socket timeout")
        self.assertEqual(timeouts, [channel])
        self.assertFalse(transport.connected)
        self.serverSends("426 Connection closed")


    def test_connectionLost(self):
        """
        Losing the control connection fails the download.
        """
        d = self.client.get("file.txt")
        channel, transport = self.openPassive()
        self.serverSends("150 Opening")
        self.transport.loseConnection()
        self.failureResultOf(d)
        self.assertTrue(transport.aborted)



class PutTests(TransferTestMixin, TestCase):
    """
    Tests for L{FTPClient.put}.
    """

    def upload(self, source, path="up.txt"):
        d = self.client.put(source, path)
        channel, transport = self.openPassive()
        self.assertSent("STOR " + path)
        self.serverSends("150 Ok to send data")
        self.produce(transport)
        self.assertFalse(transport.connected)
        self.assertNoResult(d)
        self.serverSends("226 Transfer complete")
        return d, transport


    def test_bytes(self):
        """
        Bytes are sent over the data connection, which is then closed, and
        L{FTPClient.put} fires with the completion reply.
        """
        progress = []
        self.client.addObserver("progress", progress.append)
        d, transport = self.upload(b"payload")
        self.assertEqual(transport.value(), b"payload")
        self.assertEqual(self.successResultOf(d).code, 226)
        self.assertEqual(
            progress, [TransferProgress("up.txt", TransferAction.PUT, 7, 7)])


    def test_localFile(self):
        """
        A local path is uploaded with its size reported.
        """
        path = FilePath(self.mktemp())
        path.setContent(b"file contents")
        progress = []
        self.client.addObserver("progress", progress.append)
        d, transport = self.upload(path.path)
        self.assertEqual(transport.value(), b"file contents")
        self.successResultOf(d)
        self.assertEqual(progress[-1].totalSize, 13)


    def test_stream(self):
        """
        An open stream is read to its end but not closed.
        """
        stream = BytesIO(b"streamed")
        d, transport = self.upload(stream)
        self.assertEqual(transport.value(), b"streamed")
        self.successResultOf(d)
        self.assertFalse(stream.closed)


    def test_missingFile(self):
        """
        A missing local file fails before anything is sent.
        """
        d = self.client.put(self.mktemp(), "up.txt")
        failure = self.failureResultOf(d, TransferError)
        self.assertEqual(str(failure.value), "Local file doesn't exist.")
        self.assertSent()


    def test_directory(self):
        """
        A local directory cannot be uploaded.
        """
        path = FilePath(self.mktemp())
        path.makedirs()
        d = self.client.put(path, "up.txt")
        failure = self.failureResultOf(d, TransferError)
        self.assertEqual(str(failure.value), "Local path cannot be a directory")


    def test_unsupportedSource(self):
        """
        A source of an unsupported kind fails with L{TypeError}.
        """
        self.failureResultOf(self.client.put(42, "up.txt"), TypeError)
        self.assertSent()


    def test_refused(self):
        """
        C{STOR} being refused fails the upload without sending any data.
        """
        d = self.client.put(b"payload", "readonly/up.txt")
        channel, transport = self.openPassive()
        self.serverSends("553 Could not create file")
        self.failureResultOf(d, CommandFailed)
        self.assertEqual(transport.value(), b"")
        self.assertTrue(transport.aborted)


    def test_markBeforeConnected(self):
        """
        If the mark arrives before the data connection is made, sending
        starts once it is.
        """
        d = self.client.put(b"late", "up.txt")
        self.assertSent("PASV")
        self.serverSends("227 Entering Passive Mode (127,0,0,1,19,136)")
        self.serverSends("150 Ok to send data")
        channel, transport = self.connectData()
        self.produce(transport)
        self.assertEqual(transport.value(), b"late")
        self.serverSends("226 Transfer complete")
        self.successResultOf(d)


    def test_roundTrip(self):
        """
        Bytes uploaded and downloaded again are unchanged.
        """
        content = bytes(range(256)) * 100
        d, transport = self.upload(content)
        self.successResultOf(d)
        uploaded = transport.value()

        d = self.download("up.txt", [uploaded[:1000], uploaded[1000:]])
        self.assertEqual(self.successResultOf(d), content)



class ListTests(TransferTestMixin, TestCase):
    """
    Tests for L{FTPClient.list} and L{FTPClient.ls}.
    """

    def test_list(self):
        """
        L{FTPClient.list} fires with the listing text sent over the data
        connection.
        """
        d = self.client.list("/")
        channel, transport = self.openPassive()
        self.assertSent("LIST /")
        self.serverSends("150 Here comes the directory listing")
        channel.dataReceived(LISTING_LINE)
        transport.loseConnection()
        self.serverSends("226 Directory send OK")
        self.assertEqual(self.successResultOf(d), LISTING_LINE.decode("ascii"))


    def test_listCurrentDirectory(self):
        """
        Without a path, a bare C{LIST} is sent.
        """
        self.client.list()
        self.openPassive()
        self.assertSent("LIST")


    def test_emptyList(self):
        """
        An empty listing fails with L{EmptyListingError}.
        """
        d = self.client.list("/empty")
        channel, transport = self.openPassive()
        self.serverSends("150 Here comes the directory listing")
        transport.loseConnection()
        self.serverSends("226 Directory send OK")
        failure = self.failureResultOf(d, EmptyListingError)
        self.assertEqual(failure.value.code, 451)
        self.assertEqual(
            str(failure.value),
            "Could not retrieve a file listing for /empty.")


    def test_lsWithStat(self):
        """
        L{FTPClient.ls} uses C{STAT} when it works, which needs no data
        connection.
        """
        d = self.client.ls("/")
        self.assertSent("STAT /")
        self.serverSends(
            "213-Status of /:",
            " -rw-r--r-- 1 ftp ftp 5 Jan 01 12:00 hello.txt",
            " drwxr-xr-x 2 ftp ftp 4096 Jan 01 12:00 pub",
            "213 End of status")
        entries = self.successResultOf(d)
        self.assertEqual(
            [(entry.name, entry.type) for entry in entries],
            [("hello.txt", FileType.FILE), ("pub", FileType.DIRECTORY)])
        self.assertFalse(self.client.state.useList)
        self.assertEqual(len(self.reactor.tcpClients), 1)


    def test_lsFallsBackToList(self):
        """
        A server which does not implement C{STAT} is listed with C{LIST},
        now and from then on.
        """
        d = self.client.ls("/")
        self.assertSent("STAT /")
        self.serverSends("502 Command not implemented")
        self.assertTrue(self.client.state.useList)
        channel, transport = self.openPassive()
        self.assertSent("LIST /")
        self.serverSends("150 Here comes the directory listing")
        channel.dataReceived(LISTING_LINE)
        transport.loseConnection()
        self.serverSends("226 Directory send OK")
        [entry] = self.successResultOf(d)
        self.assertEqual(entry.name, "hello.txt")
        self.assertEqual(entry.size, 5)

        self.client.ls("/pub")
        self.assertSent("PASV")


    def test_lsUnknownCommand(self):
        """
        A 500 reply to C{STAT} also switches to C{LIST}.
        """
        self.client.ls("/")
        self.serverSends("500 Unknown command")
        self.assertTrue(self.client.state.useList)


    def test_lsOtherError(self):
        """
        Other C{STAT} failures are passed on.
        """
        d = self.client.ls("/nope")
        self.serverSends("550 No such directory")
        self.failureResultOf(d, CommandFailed)
        self.assertFalse(self.client.state.useList)


    def test_lsQuirkyServer(self):
        """
        Any C{STAT} failure on a server known not to list with it switches
        to C{LIST}.
        """
        self.client.state.system = "215 hummingbird ftp server"
        self.client.ls("/")
        self.serverSends("550 Not a plain file")
        self.assertTrue(self.client.state.useList)
        self.assertSent("STAT /", "PASV")


    def test_lsUseList(self):
        """
        A client configured to use C{LIST} never tries C{STAT}.
        """
        self.client.state.useList = True
        self.client.ls("/")
        self.assertSent("PASV")


    def test_lsNormalizesNames(self):
        """
        Entry names are put into Unicode normalization form C.
        """
        d = self.client.ls("/")
        self.serverSends(
            "213-Status of /:",
            "-rw-r--r-- 1 ftp ftp 5 Jan 01 12:00 cafe\u0301.txt",
            "213 End of status")
        [entry] = self.successResultOf(d)
        self.assertEqual(entry.name, "caf\u00e9.txt")
