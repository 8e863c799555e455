import random
import logging
from contextlib import contextmanager
from bitstring import BitArray
from typing import Any, Iterator, List

logger = logging.getLogger(__name__)


class AllocationError(Exception):
    ''' backing storage could not be obtained '''


class HeapError(Exception):
    ''' misuse of the heap: double free, stale handle, forbidden allocation '''


class Heap:
    ''' index-based arena that tracks every allocation '''

    def __init__(self, fail_probability: int = 0, seed: int = None) -> None:
        self.blocks: List[Any] = []
        self.in_use: BitArray = BitArray()
        self.free_slots: List[int] = []

        self.fail_probability: int = fail_probability  # [%]
        self.fail_after: int | None = None
        self.allocations: int = 0
        self.releases: int = 0
        self.failed: int = 0

        self._random = random.Random(seed)
        self._noallocate: bool = False

    @property
    def live(self) -> int:
        ''' number of blocks currently allocated '''
        return self.allocations - self.releases

    def _should_fail(self) -> bool:
        if self.fail_after is not None:
            if self.fail_after <= 0:
                return True
            self.fail_after -= 1
        if self.fail_probability > 0:
            return self._random.random() * 100 < self.fail_probability
        return False

    def malloc(self, payload: Any) -> int | None:
        ''' store payload in a block, return its handle or None on failure '''

        if self._noallocate:
            raise HeapError('malloc called in no-allocate section')

        if self._should_fail():
            self.failed += 1
            logger.warning('malloc failure injected')
            return None

        if self.free_slots:
            handle = self.free_slots.pop()
            self.blocks[handle] = payload
            self.in_use[handle] = True
        else:
            handle = len(self.blocks)
            self.blocks.append(payload)
            self.in_use.append('0b1')

        self.allocations += 1
        logger.debug(f'malloc:{handle}')
        return handle

    def free(self, handle: int) -> None:
        ''' release a block; its handle may be reused afterwards '''

        if self._noallocate:
            raise HeapError('free called in no-allocate section')
        self._check_live(handle)

        self.blocks[handle] = None
        self.in_use[handle] = False
        self.free_slots.append(handle)
        self.releases += 1
        logger.debug(f'free:{handle}')

    def load(self, handle: int) -> Any:
        self._check_live(handle)
        return self.blocks[handle]

    def _check_live(self, handle: int) -> None:
        if handle is None or not 0 <= handle < len(self.blocks) or not self.in_use[handle]:
            raise HeapError(f'block {handle} is not allocated')

    def leaks(self) -> List[int]:
        ''' handles of blocks still allocated '''
        return list(self.in_use.findall('0b1'))

    @contextmanager
    def no_allocate(self) -> Iterator['Heap']:
        ''' any malloc or free inside the block raises HeapError '''

        previous = self._noallocate
        self._noallocate = True
        try:
            yield self
        finally:
            self._noallocate = previous

    def __str__(self) -> str:
        return f'Heap(live={self.live}, allocations={self.allocations}, releases={self.releases}, failed={self.failed})'
