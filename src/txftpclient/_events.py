# -*- test-case-name: txftpclient.test.test_events -*-
# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Named-event observers for passive monitoring of a client.
"""

from typing import Callable, Dict, List

from twisted.logger import Logger



class EventSource:
    """
    Keep lists of observers keyed by event name and call them when an event
    is dispatched.

    An observer which raises is logged and does not prevent the remaining
    observers from being called.
    """

    _log = Logger()

    def __init__(self) -> None:
        self._observers: Dict[str, List[Callable[..., object]]] = {}


    def addObserver(self, event: str, observer: Callable[..., object]) -> None:
        """
        Call C{observer} with the arguments of every future C{event}.

        @raise TypeError: If C{observer} is not callable.
        """
        if not callable(observer):
            raise TypeError("%r is not callable" % (observer,))
        self._observers.setdefault(event, []).append(observer)


    def removeObserver(self, event: str, observer: Callable[..., object]) -> None:
        """
        Stop calling C{observer} for C{event}.

        @raise ValueError: If C{observer} was not observing C{event}.
        """
        self._observers.get(event, []).remove(observer)


    def dispatch(self, event: str, *args: object) -> None:
        # Copy, so observers may remove themselves while being called.
        for observer in list(self._observers.get(event, ())):
            try:
                observer(*args)
            except Exception:
                self._log.failure(
                    "Observer {observer!r} of {event} failed",
                    observer=observer, event=event)
