import argparse
import shlex
import sys
import logging
from typing import Iterable, List

from harness import Heap
from queueLL import (Queue, buffer_string, copy_string, queue_free,
                     queue_insert_head, queue_insert_tail, queue_new,
                     queue_remove_head, queue_reverse, queue_size)

logger = logging.getLogger(__name__)


class UsageError(Exception):
    pass


class QueueTester:
    BUFSIZE = 1024
    STRINGPAD = 64  # bytes after the declared buffer that must stay untouched
    PAD_BYTE = ord('X')
    MAX_ERRORS = 5
    HELP = {
        'new': 'create new queue',
        'free': 'delete queue',
        'ih': 'str [n] | insert string at head (n times)',
        'it': 'str [n] | insert string at tail (n times)',
        'rh': '[str] | remove from head, optionally compare with str',
        'rhq': 'remove from head without reporting value',
        'size': '[n] | compute queue size, optionally compare with n',
        'reverse': 'reverse queue',
        'show': 'display queue contents',
        'option': 'name value | set malloc, length or fail',
        'help': 'show this message',
        'quit': 'exit',
    }

    def __init__(self, heap: Heap, bufsize: int = BUFSIZE) -> None:
        self.heap: Heap = heap
        self.queue: Queue | None = None
        self.bufsize: int = bufsize
        self.max_errors: int = QueueTester.MAX_ERRORS
        self.error_count: int = 0

        self.commands = {
            'new': self.do_new,
            'free': self.do_free,
            'ih': self.do_ih,
            'it': self.do_it,
            'rh': self.do_rh,
            'rhq': self.do_rhq,
            'size': self.do_size,
            'reverse': self.do_reverse,
            'show': self.do_show,
            'option': self.do_option,
            'help': self.do_help,
        }

    def error(self, msg: str) -> None:
        self.error_count += 1
        logger.error(f'ERROR: {msg}')

    def run_command(self, line: str) -> bool:
        ''' execute one command line, return False on quit '''

        args = shlex.split(line, comments=True)
        if not args:
            return True
        cmd, args = args[0], args[1:]
        logger.debug(f'cmd> {line.strip()}')

        if cmd == 'quit':
            return False
        if cmd not in self.commands:
            self.error(f"unknown command '{cmd}'")
            return True

        try:
            self.commands[cmd](args)
        except UsageError as e:
            self.error(f'{cmd}: {e}')
        return True

    def run(self, lines: Iterable[str]) -> int:
        ''' execute a command script, return the number of errors '''

        for line in lines:
            if not self.run_command(line):
                break
            if self.error_count >= self.max_errors:
                logger.error('error limit exceeded, stopping')
                break
        self.finish()
        return self.error_count

    def finish(self) -> None:
        if self.queue is not None:
            self.do_free([])
        elif self.heap.live > 0:
            self.error(f'{self.heap.live} blocks still allocated:{self.heap.leaks()}')
        logger.info(f'{self.heap}')

    def show(self) -> None:
        if self.queue is None:
            logger.info('q = NULL')
            return
        try:
            self.queue.check()
        except AssertionError as e:
            self.error(f'corrupted queue: {e}')
            return
        logger.info(f"q = [{' '.join(self.queue)}]")

    @staticmethod
    def _count(args: List[str], idx: int, default: int = None) -> int | None:
        if len(args) <= idx:
            return default
        try:
            return int(args[idx])
        except ValueError:
            raise UsageError(f"invalid number '{args[idx]}'")

    def do_new(self, args: List[str]) -> None:
        if self.queue is not None:
            self.do_free([])

        failed = self.heap.failed
        self.queue = queue_new(self.heap)
        if self.queue is None:
            if self.heap.failed > failed:
                logger.warning('queue_new failed: allocation failure')
            else:
                self.error('queue_new returned NULL')
        self.show()

    def do_free(self, args: List[str]) -> None:
        queue_free(self.queue)
        self.queue = None
        self.show()
        if self.heap.live > 0:
            self.error(f'freeing queue left {self.heap.live} blocks allocated')

    def _insert(self, args: List[str], insert, where: str) -> None:
        if not args:
            raise UsageError('missing string argument')
        s = args[0]
        n = self._count(args, 1, default=1)

        if self.queue is None:
            logger.warning(f'calling insert {where} on null queue')
        for _ in range(n):
            failed = self.heap.failed
            if insert(self.queue, s):
                if self.queue is None:
                    self.error(f'insert {where} on null queue succeeded')
                    break
                continue
            if self.queue is not None:
                if self.heap.failed > failed:
                    logger.warning(f'insert {where} failed: allocation failure')
                else:
                    self.error(f'insert {where} failed')
            break
        self.show()

    def do_ih(self, args: List[str]) -> None:
        self._insert(args, queue_insert_head, 'head')

    def do_it(self, args: List[str]) -> None:
        self._insert(args, queue_insert_tail, 'tail')

    def _remove(self, expected: str | None, quiet: bool) -> None:
        buf = bytearray([QueueTester.PAD_BYTE] * (self.bufsize + QueueTester.STRINGPAD))
        was_empty = queue_size(self.queue) == 0

        if not queue_remove_head(self.queue, buf, self.bufsize):
            if self.queue is None:
                logger.warning('calling remove head on null queue')
            elif not was_empty:
                self.error('remove head failed on non-empty queue')
            else:
                logger.warning('remove head on empty queue')
            if expected is not None:
                self.error(f'expected {expected} but nothing was removed')
            self.show()
            return

        if any(b != QueueTester.PAD_BYTE for b in buf[self.bufsize:]):
            self.error(f'remove head wrote past the {self.bufsize} byte buffer')

        value = buffer_string(buf[:self.bufsize])
        if not quiet:
            logger.info(f'removed {value} from queue')
        if expected is not None:
            want = copy_string(expected)[:self.bufsize - 1].decode('utf-8', errors='replace')
            if value != want:
                self.error(f'removed value {value} does not match expected value {want}')
        self.show()

    def do_rh(self, args: List[str]) -> None:
        self._remove(args[0] if args else None, quiet=False)

    def do_rhq(self, args: List[str]) -> None:
        self._remove(None, quiet=True)

    def do_size(self, args: List[str]) -> None:
        expected = self._count(args, 0)
        cnt = queue_size(self.queue)
        logger.info(f'queue size = {cnt}')
        if expected is not None and cnt != expected:
            self.error(f'computed queue size {cnt} does not match expected {expected}')
        self.show()

    def do_reverse(self, args: List[str]) -> None:
        if self.queue is None:
            logger.warning('calling reverse on null queue')
        with self.heap.no_allocate():
            queue_reverse(self.queue)
        self.show()

    def do_show(self, args: List[str]) -> None:
        self.show()

    def do_option(self, args: List[str]) -> None:
        if len(args) != 2:
            raise UsageError('expected option name and value')
        name = args[0]
        value = self._count(args, 1)

        if name == 'malloc':
            if not 0 <= value <= 100:
                raise UsageError('malloc failure probability must be 0..100')
            self.heap.fail_probability = value
        elif name == 'length':
            if value <= 0:
                raise UsageError('buffer length must be positive')
            self.bufsize = value
        elif name == 'fail':
            self.max_errors = value
        else:
            raise UsageError(f"unknown option '{name}'")
        logger.info(f'option {name} = {value}')

    def do_help(self, args: List[str]) -> None:
        for cmd, text in QueueTester.HELP.items():
            logger.info(f'\t{cmd}\t{text}')


VERBOSITY = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


def main(argv: List[str] = None) -> int:
    parser = argparse.ArgumentParser(
        prog='qtest',
        description='Drive a string queue through a script of commands.'
    )
    parser.add_argument('-f', '--file', help='command file (default: stdin)')
    parser.add_argument('-v', '--verbose', type=int, choices=VERBOSITY.keys(), default=1,
                        help='stdout verbosity')
    parser.add_argument('-l', '--logfile', default='qtest.log', help='debug log file')
    parser.add_argument('--malloc', type=int, default=0,
                        help='allocation failure probability [%%]')
    parser.add_argument('--length', type=int, default=QueueTester.BUFSIZE,
                        help='removal buffer size')
    parser.add_argument('--seed', type=int, help='seed for allocation failures')
    args = parser.parse_args(argv)

    logging.basicConfig(filename=args.logfile, level=logging.DEBUG)

    root = logging.getLogger()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(VERBOSITY[args.verbose])
    root.addHandler(handler)

    heap = Heap(fail_probability=args.malloc, seed=args.seed)
    tester = QueueTester(heap, bufsize=args.length)

    if args.file:
        with open(args.file) as f:
            errors = tester.run(f)
    else:
        errors = tester.run(sys.stdin)

    if errors:
        logger.error(f'{errors} errors')
    return 1 if errors else 0


if __name__ == '__main__':
    sys.exit(main())
