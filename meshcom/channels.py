import logging
import threading
from collections import deque
from typing import Deque, Generic, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CAPACITY = 128


class Channel(Generic[T]):
    """
    Bounded one-directional queue between two threads.

    Senders never block: try_send() drops the item (and logs) when the
    queue is full or already closed. Receivers can poll with try_recv()
    or wait through a Selector. Several channels may share one waker
    condition so a single thread can wait on all of them at once.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, name: str = "channel",
                 waker: Optional[threading.Condition] = None):
        if capacity < 1:
            raise ValueError("channel capacity must be >= 1")
        self.capacity = capacity
        self.name = name
        self.waker = waker or threading.Condition()
        self._items: Deque[T] = deque()
        self._closed = False

    def __len__(self) -> int:
        with self.waker:
            return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    def try_send(self, item: T) -> bool:
        with self.waker:
            if self._closed:
                logger.debug("%s closed, dropping %r", self.name, item)
                return False
            if len(self._items) >= self.capacity:
                logger.warning("%s full (%d), dropping %r", self.name, self.capacity, item)
                return False
            self._items.append(item)
            self.waker.notify_all()
            return True

    def try_recv(self) -> Optional[T]:
        with self.waker:
            if self._items:
                return self._items.popleft()
            return None

    def drain(self) -> List[T]:
        """Take everything currently queued, oldest first."""
        with self.waker:
            items = list(self._items)
            self._items.clear()
            return items

    def exhausted(self) -> bool:
        """True once the channel is closed and nothing is left to read."""
        with self.waker:
            return self._closed and not self._items

    def close(self):
        with self.waker:
            self._closed = True
            self.waker.notify_all()


class Selector:
    """
    Waits on several channels sharing one waker and hands out whichever
    has an item. The starting channel rotates on every pick so a busy
    channel cannot starve the others.
    """

    def __init__(self, channels: Sequence[Channel]):
        if not channels:
            raise ValueError("nothing to select on")
        waker = channels[0].waker
        if any(ch.waker is not waker for ch in channels):
            raise ValueError("selected channels must share a waker")
        self.channels = list(channels)
        self.waker = waker
        self._turn = 0

    def _pick(self) -> Optional[Tuple[Channel, object]]:
        n = len(self.channels)
        for i in range(n):
            ch = self.channels[(self._turn + i) % n]
            if ch._items:
                self._turn = (self._turn + i + 1) % n
                return ch, ch._items.popleft()
        return None

    def next(self, timeout: Optional[float] = None) -> Optional[Tuple[Channel, object]]:
        """
        Block until some channel has an item and return (channel, item).
        Returns None when every channel is closed and drained, or when
        the timeout runs out.
        """
        with self.waker:
            while True:
                got = self._pick()
                if got is not None:
                    return got
                if all(ch._closed for ch in self.channels):
                    return None
                if not self.waker.wait(timeout) and timeout is not None:
                    return self._pick()
