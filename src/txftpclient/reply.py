# -*- test-case-name: txftpclient.test.test_reply -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Framing of control-connection lines into FTP replies.

A reply is either a single line::

    200 Type set to I.

or several lines, opened by the code and a dash and closed by a line
starting with the same code and a space::

    211-Features:
     MLST
     UTF8
    211 End

See U{RFC 959, section 4.2<https://tools.ietf.org/html/rfc959#section-4>}.
"""

from __future__ import annotations

import re
from typing import FrozenSet, List, Optional, Tuple

from attrs import field, frozen

from txftpclient.error import BadResponse

_firstLine = re.compile(r"^(\d{3})([ -]|$)")



@frozen
class Reply:
    """
    A complete reply from an FTP server.

    @ivar code: The three digit reply code.
    @ivar lines: Every line of the reply, codes included.
    """

    code: int
    lines: Tuple[str, ...] = field(converter=tuple)


    @property
    def text(self) -> str:
        """
        All lines of the reply joined by newlines.
        """
        return "\n".join(self.lines)


    @property
    def isMark(self) -> bool:
        """
        Whether this is a positive preliminary (1xx) reply.
        """
        return 100 <= self.code < 200


    @property
    def isError(self) -> bool:
        """
        Whether this is a transient or permanent negative (4xx, 5xx) reply.
        """
        return self.code >= 400


    @classmethod
    def fromLines(cls, lines: List[str]) -> Reply:
        return cls(int(lines[0][:3]), lines)



@frozen
class MarkSpec:
    """
    The preliminary replies a data command waits for.

    @ivar marks: Codes which announce that the data connection is live.
    @ivar ignore: A completion code which, once a mark has been seen, belongs
        to the marked command and is never taken as the reply to the next
        queued command.
    """

    marks: FrozenSet[int] = field(converter=frozenset)
    ignore: Optional[int] = None



class ReplyDecoder:
    """
    Incrementally assemble control-connection lines into L{Reply}s.
    """

    def __init__(self) -> None:
        self._code: Optional[str] = None
        self._lines: List[str] = []


    def lineReceived(self, line: str) -> Optional[Reply]:
        """
        Feed one line (without its terminator) to the decoder.

        @return: The L{Reply} this line completes, or L{None} if more lines
            are needed.

        @raise BadResponse: If C{line} cannot open a reply.
        """
        if self._code is None:
            match = _firstLine.match(line)
            if match is None:
                raise BadResponse("Invalid reply line: %r" % (line,))
            if match.group(2) == "-":
                self._code = match.group(1)
                self._lines = [line]
                return None
            return Reply.fromLines([line])

        self._lines.append(line)
        if line[:3] == self._code and line[3:4] in (" ", ""):
            lines = self._lines
            self._code = None
            self._lines = []
            return Reply.fromLines(lines)
        return None


    def reset(self) -> None:
        """
        Forget any partially received reply.
        """
        self._code = None
        self._lines = []
