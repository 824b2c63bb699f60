"""Blocking, pull-style streams fed from a producer thread."""

from collections import deque
import threading
from typing import Callable, Deque, Generic, Iterator, Optional, TypeVar

from opencodepy.core.events import Event

T = TypeVar("T")


class _EndOfStream:
    """Sentinel returned by ``next()`` once a stream is closed and drained."""

    _instance = None

    def __new__(cls) -> "_EndOfStream":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


class BlockingStream(Generic[T]):
    """
    Thread-safe FIFO between one producer and one consumer.

    The producer calls ``put``; the consumer calls ``next`` or iterates.
    After ``close`` the consumer still receives every item that was put
    before it, then END_OF_STREAM. Forward-only: once drained it stays
    drained.

    Args:
        on_close: Called once, outside the lock, the first time the stream
            is closed (used to tear down the producer)
    """

    def __init__(self, on_close: Optional[Callable[[], None]] = None):
        self._items: Deque[T] = deque()
        self._closed = False
        self._error: Optional[str] = None
        self._cond = threading.Condition()
        self._on_close = on_close

    def put(self, item: T) -> bool:
        """Enqueue an item. Returns False if the stream is already closed."""
        with self._cond:
            if self._closed:
                return False
            self._items.append(item)
            self._cond.notify()
            return True

    def next(self, timeout: Optional[float] = None):
        """
        Next item, blocking until one is available.

        Returns END_OF_STREAM when the stream is closed and empty, or when
        ``timeout`` elapses first (the stream stays open in that case).
        """
        with self._cond:
            ready = self._cond.wait_for(lambda: self._items or self._closed, timeout)
            if not ready or not self._items:
                return END_OF_STREAM
            return self._items.popleft()

    def close(self, error: Optional[str] = None) -> None:
        """Mark the stream closed and wake all waiters. Idempotent."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._error = error
            self._cond.notify_all()
            hook, self._on_close = self._on_close, None
        if hook is not None:
            hook()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def error(self) -> Optional[str]:
        """Reason the producer closed the stream, if it failed."""
        with self._cond:
            return self._error

    def __iter__(self) -> Iterator[T]:
        while True:
            item = self.next()
            if item is END_OF_STREAM:
                return
            yield item

    def __enter__(self) -> "BlockingStream[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


EventStream = BlockingStream[Event]
