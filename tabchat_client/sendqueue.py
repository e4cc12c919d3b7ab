from collections import deque
from threading import Condition
from typing import Deque, Optional

from .config import SEND_QUEUE_CAPACITY
from .errors import QueueFullError, ShutdownError


class SendQueue:
    ''' Bounded FIFO of encoded outbound lines, shared by send() and the writer thread '''
    def __init__(self, capacity: int = SEND_QUEUE_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._items: Deque[str] = deque()
        self._cond = Condition()   # guards _items and _closed
        self._closed = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def enqueue(self, item: str, timeout: Optional[float] = None) -> None:
        '''
        Append an item, waiting up to timeout seconds for free space.
        Input:
            - item: encoded line
            - timeout: seconds to wait, None waits forever
        Raises QueueFullError when no space frees up in time,
        ShutdownError when the queue is (or gets) shut down.
        '''
        with self._cond:
            ok = self._cond.wait_for(
                lambda: self._closed or len(self._items) < self.capacity, timeout)
            if self._closed:
                raise ShutdownError("send queue is shut down")
            if not ok:
                raise QueueFullError("Send queue full; connection congested.")
            self._items.append(item)
            self._cond.notify_all()

    def dequeue(self) -> str:
        ''' Remove and return the oldest item, blocking until one exists. Raises ShutdownError after shutdown. '''
        with self._cond:
            self._cond.wait_for(lambda: self._closed or self._items)
            if self._closed:
                raise ShutdownError("send queue is shut down")
            item = self._items.popleft()
            self._cond.notify_all()
            return item

    def shutdown(self) -> int:
        '''
        Close the queue, drop anything still queued and wake every waiter.
        Safe to call more than once.
        Output: number of items discarded
        '''
        with self._cond:
            dropped = len(self._items)
            self._items.clear()
            self._closed = True
            self._cond.notify_all()
            return dropped
