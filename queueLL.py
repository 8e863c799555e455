import logging
from typing import Iterator

from harness import AllocationError, Heap

logger = logging.getLogger(__name__)


class InvalidArgument(ValueError):
    ''' absent or unusable argument '''


class EmptyQueue(IndexError):
    ''' removal requested on a queue with no elements '''


class Node:
    def __init__(self) -> None:
        self.value: int | None = None  # handle of the owned string block
        self.next: int | None = None


def copy_string(s: str | bytes) -> bytes:
    ''' copy s up to its first NUL, as strlen/strcpy would '''

    if isinstance(s, str):
        try:
            data = s.encode('utf-8')
        except UnicodeEncodeError as e:
            raise InvalidArgument(f'cannot encode string: {e.reason}') from e
    elif isinstance(s, (bytes, bytearray)):
        data = bytes(s)
    else:
        raise InvalidArgument(f'cannot copy {type(s).__name__}')
    return data.split(b'\0', 1)[0]


def buffer_string(buf: bytearray) -> str:
    ''' decode a NUL-terminated buffer '''
    return bytes(buf).split(b'\0', 1)[0].decode('utf-8', errors='replace')


class Queue:
    ''' queue implementation using a singly-linked list of heap blocks '''

    def __init__(self, heap: Heap) -> None:
        self.heap: Heap = heap
        self.block: int | None = heap.malloc(self)
        if self.block is None:
            raise AllocationError('cannot allocate queue')

        self.head: int | None = None
        self.tail: int | None = None
        self.count: int = 0
        logger.info(f'queue created:{self.block}')

    def _node(self, handle: int) -> Node:
        return self.heap.load(handle)

    def _check_usable(self) -> None:
        if self.block is None:
            raise InvalidArgument('queue has been freed')

    def _new_node(self, s: str | bytes) -> int:
        ''' allocate a node owning a copy of s, release everything on failure '''

        if s is None:
            raise InvalidArgument('string is absent')
        data = copy_string(s)

        nh = self.heap.malloc(Node())
        if nh is None:
            raise AllocationError('cannot allocate node')

        sp = self.heap.malloc(data)
        if sp is None:
            self.heap.free(nh)
            raise AllocationError('cannot allocate string')

        self._node(nh).value = sp
        return nh

    def is_empty(self) -> bool:
        return self.head is None and self.tail is None

    def size(self) -> int:
        return self.count

    def __len__(self) -> int:
        return self.count

    def insert_head(self, s: str | bytes) -> None:
        ''' LIFO push '''

        self._check_usable()
        nh = self._new_node(s)

        self._node(nh).next = self.head
        self.head = nh
        if self.tail is None:
            self.tail = nh
        self.count += 1
        logger.debug(f'insert_head:{nh}:count {self.count}')

    def insert_tail(self, s: str | bytes) -> None:
        ''' FIFO enqueue, O(1) through the tail handle '''

        self._check_usable()
        nh = self._new_node(s)

        if self.tail is None:
            self.head = nh
        else:
            self._node(self.tail).next = nh
        self.tail = nh
        self.count += 1
        logger.debug(f'insert_tail:{nh}:count {self.count}')

    def remove_head(self, buf: bytearray, bufsize: int) -> None:
        '''
        Detach the head node and release it.

        Up to bufsize - 1 bytes of the removed string are copied into buf,
        followed by a NUL. Longer strings are truncated silently.
        '''

        self._check_usable()
        if buf is None:
            raise InvalidArgument('buffer is absent')
        if bufsize is None or bufsize <= 0:
            raise InvalidArgument(f'invalid buffer size {bufsize}')
        if bufsize > len(buf):
            raise InvalidArgument(f'buffer size {bufsize} exceeds buffer length {len(buf)}')
        if self.head is None:
            raise EmptyQueue('remove from empty queue')

        nh = self.head
        node = self._node(nh)
        value = self.heap.load(node.value)

        self.head = node.next
        if self.head is None:
            self.tail = None

        n = min(len(value), bufsize - 1)
        buf[:n] = value[:n]
        buf[n] = 0

        self.heap.free(node.value)
        self.heap.free(nh)
        self.count -= 1
        logger.debug(f'remove_head:{nh}:count {self.count}')

    def reverse(self) -> None:
        ''' relink the chain back to front; no block is allocated or released '''

        self._check_usable()
        self.head, self.tail = self.tail, self.head

        prev_n = None
        cur_n = self.tail
        while cur_n is not None:
            node = self._node(cur_n)
            next_n = node.next
            node.next = prev_n
            prev_n = cur_n
            cur_n = next_n

    def first(self) -> str:
        self._check_usable()
        if self.head is None:
            raise EmptyQueue('first of empty queue')
        return self._decode(self.head)

    def last(self) -> str:
        self._check_usable()
        if self.tail is None:
            raise EmptyQueue('last of empty queue')
        return self._decode(self.tail)

    def _decode(self, handle: int) -> str:
        return self.heap.load(self._node(handle).value).decode('utf-8', errors='replace')

    def __iter__(self) -> Iterator[str]:
        self._check_usable()
        handle = self.head
        while handle is not None:
            yield self._decode(handle)
            handle = self._node(handle).next

    def check(self) -> None:
        ''' verify head, tail and count are consistent with the chain '''

        self._check_usable()
        assert self.count >= 0, f'negative count {self.count}'
        if self.count == 0:
            assert self.head is None, 'empty queue with a head'
            assert self.tail is None, 'empty queue with a tail'
            return

        assert self.head is not None and self.tail is not None, \
            f'count {self.count} but head or tail is absent'
        if self.count == 1:
            assert self.head == self.tail, 'single element but head != tail'

        seen = set()
        handle = self.head
        for _ in range(self.count - 1):
            assert handle not in seen, 'cycle in chain'
            seen.add(handle)
            assert self.heap.load(self._node(handle).value) is not None
            handle = self._node(handle).next
            assert handle is not None, f'chain shorter than count {self.count}'
        assert handle == self.tail, 'tail is not the last reachable node'
        assert self._node(handle).next is None, 'tail has a successor'

    def free(self) -> None:
        ''' release every node, its string, then the queue itself '''

        self._check_usable()
        released = 0
        handle = self.head
        while handle is not None:
            node = self._node(handle)
            next_n = node.next
            self.heap.free(node.value)
            self.heap.free(handle)
            handle = next_n
            released += 1

        self.head = None
        self.tail = None
        self.count = 0
        self.heap.free(self.block)
        logger.info(f'queue freed:{self.block}:{released} nodes released')
        self.block = None

    def __str__(self) -> str:
        if self.block is None:
            return 'Queue(freed)'
        return f"Queue([{' '.join(self)}])"


def queue_new(heap: Heap) -> Queue | None:
    ''' allocate a new queue, or None if allocation failed '''

    try:
        return Queue(heap)
    except AllocationError as e:
        logger.debug(f'queue_new:{e}')
        return None


def queue_free(q: Queue | None) -> None:
    if q is None:
        return
    try:
        q.free()
    except InvalidArgument as e:
        logger.warning(f'queue_free:{e}')


def queue_insert_head(q: Queue | None, s: str | bytes | None) -> bool:
    if q is None:
        logger.debug('queue_insert_head:queue is absent')
        return False
    try:
        q.insert_head(s)
    except (InvalidArgument, AllocationError) as e:
        logger.debug(f'queue_insert_head:{e}')
        return False
    return True


def queue_insert_tail(q: Queue | None, s: str | bytes | None) -> bool:
    if q is None:
        logger.debug('queue_insert_tail:queue is absent')
        return False
    try:
        q.insert_tail(s)
    except (InvalidArgument, AllocationError) as e:
        logger.debug(f'queue_insert_tail:{e}')
        return False
    return True


def queue_remove_head(q: Queue | None, buf: bytearray | None, bufsize: int) -> bool:
    if q is None:
        logger.debug('queue_remove_head:queue is absent')
        return False
    try:
        q.remove_head(buf, bufsize)
    except (InvalidArgument, EmptyQueue) as e:
        logger.debug(f'queue_remove_head:{e}')
        return False
    return True


def queue_size(q: Queue | None) -> int:
    if q is None:
        return 0
    return q.size()


def queue_reverse(q: Queue | None) -> None:
    if q is None:
        return
    try:
        q.reverse()
    except InvalidArgument as e:
        logger.debug(f'queue_reverse:{e}')
