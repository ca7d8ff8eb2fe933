# -*- test-case-name: txftpclient.test.test_listing -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Parsing of directory listings as returned by C{LIST} and C{STAT}.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timedelta
from typing import List, Optional

from attrs import frozen
from constantly import NamedConstant, Names

from twisted.logger import Logger

_months = {
    name: number
    for number, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun",
         "jul", "aug", "sep", "oct", "nov", "dec"], 1)
}



class FileType(Names):
    """
    The kind of filesystem object a listing line describes.
    """

    FILE = NamedConstant()
    DIRECTORY = NamedConstant()
    SYMLINK = NamedConstant()
    UNKNOWN = NamedConstant()



_unixTypes = {
    "-": FileType.FILE,
    "d": FileType.DIRECTORY,
    "l": FileType.SYMLINK,
}



@frozen
class ListingEntry:
    """
    One file described by a directory listing.

    @ivar date: The timestamp exactly as the server formatted it.
    @ivar time: C{date} parsed into a L{datetime}, or L{None} if it could not
        be understood.
    @ivar target: The destination of a symbolic link, or L{None}.
    """

    name: str
    type: NamedConstant
    size: int
    date: str
    time: Optional[datetime] = None
    permissions: Optional[str] = None
    links: Optional[int] = None
    owner: Optional[str] = None
    group: Optional[str] = None
    target: Optional[str] = None



def normalizeName(name: str) -> str:
    """
    Put a file name into Unicode normalization form C, so names which differ
    only in their composition compare equal.
    """
    return unicodedata.normalize("NFC", name)



def _parseUnixDate(text, now):
    parts = text.split()
    month = _months.get(parts[0][:3].lower())
    if month is None:
        return None
    day = int(parts[1])
    if ":" in parts[2]:
        hour, minute = (int(p) for p in parts[2].split(":"))
        stamp = datetime(now.year, month, day, hour, minute)
        # Without a year the entry is less than six months old, so a date in
        # the future belongs to last year.
        if stamp > now + timedelta(days=1):
            stamp = stamp.replace(year=now.year - 1)
        return stamp
    return datetime(int(parts[2]), month, day)



def _parseDOSDate(text):
    for format in ("%m-%d-%y %I:%M%p", "%m-%d-%Y %I:%M%p"):
        try:
            return datetime.strptime(text, format)
        except ValueError:
            pass
    return None



class ListingParser:
    """
    Parser for Unix C{ls -l} style and DOS/IIS style listings.

    This is the evil required to match::

        -rw-r--r--   1 root     other        531 Jan 29 03:26 README
        01-29-20  03:26AM       <DIR>          pub

    If you need different evil for a wacky FTP server, override
    C{unixLinePattern}, C{dosLinePattern} or L{parseDirectoryLine}.

    @ivar now: The moment used to supply the year for Unix timestamps which
        omit it.
    """

    unixLinePattern = re.compile(
        r"^(?P<filetype>.)(?P<perms>.{9})\s+(?P<nlinks>\d*)\s*"
        r"(?P<owner>\S+)\s+(?P<group>\S+)\s+(?P<size>\d+)\s+"
        r"(?P<date>\w{3}\s+\d+\s+[\d:]+)\s+(?P<filename>.{1,}?)"
        r"( -> (?P<linktarget>[^\r]*))?\r?$"
    )
    dosLinePattern = re.compile(
        r"^(?P<date>\d{2}-\d{2}-\d{2,4}\s+\d{1,2}:\d{2}[AP]M)\s+"
        r"(?P<size><DIR>|\d+)\s+(?P<filename>.+?)\r?$",
        re.IGNORECASE,
    )

    _log = Logger()

    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now if now is not None else datetime.now()
        self.files: List[ListingEntry] = []


    def feed(self, text: str) -> List[ListingEntry]:
        """
        Parse every line of C{text}.

        @return: The entries parsed so far, in listing order.
        """
        for line in text.splitlines():
            # Trailing spaces may belong to a file name.
            line = line.lstrip()
            if not line:
                continue
            entry = self.parseDirectoryLine(line)
            if entry is None:
                self.unknownLine(line)
            else:
                self.files.append(entry)
        return self.files


    def parseDirectoryLine(self, line: str) -> Optional[ListingEntry]:
        """
        Return a L{ListingEntry}, or L{None} if C{line} is not a file.
        """
        match = self.unixLinePattern.match(line)
        if match is not None:
            return self._unixEntry(match.groupdict())
        match = self.dosLinePattern.match(line)
        if match is not None:
            return self._dosEntry(match.groupdict())
        return None


    def _unixEntry(self, d):
        filetype = _unixTypes.get(d["filetype"], FileType.UNKNOWN)
        target = d["linktarget"]
        if target:
            target = target.replace(r"\ ", " ")
        try:
            stamp = _parseUnixDate(d["date"], self.now)
        except ValueError:
            stamp = None
        return ListingEntry(
            name=d["filename"].replace(r"\ ", " "),
            type=filetype,
            size=int(d["size"]),
            date=d["date"],
            time=stamp,
            permissions=d["perms"],
            links=int(d["nlinks"]) if d["nlinks"] else None,
            owner=d["owner"],
            group=d["group"],
            target=target or None,
        )


    def _dosEntry(self, d):
        date = " ".join(d["date"].split())
        if d["size"].upper() == "<DIR>":
            filetype, size = FileType.DIRECTORY, 0
        else:
            filetype, size = FileType.FILE, int(d["size"])
        return ListingEntry(
            name=d["filename"],
            type=filetype,
            size=size,
            date=date,
            time=_parseDOSDate(date.upper()),
        )


    def unknownLine(self, line: str) -> None:
        """
        Deal with a line which could not be parsed as file information.
        Headers, totals and reply framing end up here.
        """
        self._log.debug("Skipping listing line {line!r}", line=line)



def parseListing(text: str, now: Optional[datetime] = None) -> List[ListingEntry]:
    """
    Parse a complete directory listing.
    """
    return ListingParser(now).feed(text)
