import logging
from pathlib import Path

import pytest

import qtest
from harness import Heap
from qtest import QueueTester

TRACES = sorted((Path(__file__).resolve().parent.parent / "traces").glob("*.cmd"))


@pytest.fixture
def tester(heap):
    return QueueTester(heap)


def run(tester, script):
    return tester.run(script.strip().splitlines())


def feed(tester, script):
    ''' run commands one by one, leaving the queue in place '''
    for line in script.strip().splitlines():
        tester.run_command(line)


@pytest.mark.parametrize("trace", TRACES, ids=lambda p: p.stem)
def test_traces_run_without_errors(trace):
    tester = QueueTester(Heap(seed=4))

    with open(trace) as f:
        errors = tester.run(f)

    assert errors == 0
    assert tester.heap.live == 0


def test_show_reports_contents(tester, caplog):
    caplog.set_level(logging.INFO)

    run(tester, """
        new
        it a
        it b
        ih z
        show
    """)

    assert "q = [z a b]" in caplog.text
    assert tester.error_count == 0


def test_rh_mismatch_is_an_error(tester, caplog):
    errors = run(tester, """
        new
        it a
        rh b
    """)

    assert errors == 1
    assert "does not match expected value" in caplog.text


def test_size_mismatch_is_an_error(tester):
    errors = run(tester, """
        new
        it a
        it b
        size 3
    """)

    assert errors == 1


def test_rh_on_empty_queue_is_not_an_error(tester, caplog):
    errors = run(tester, """
        new
        rh
    """)

    assert errors == 0
    assert "remove head on empty queue" in caplog.text


def test_rh_on_empty_queue_with_expected_value_is_an_error(tester):
    assert run(tester, "new\nrh a") == 1


def test_operations_on_null_queue(tester):
    errors = run(tester, """
        ih a
        it b
        rh
        reverse
        size 0
        free
    """)

    assert errors == 0
    assert tester.queue is None


def test_unknown_command_and_bad_usage(tester):
    errors = run(tester, """
        bogus
        ih
        ih a many
        option length 0
        option colour 3
    """)

    assert errors == 5


def test_error_limit_stops_script(tester):
    tester.max_errors = 2

    errors = run(tester, """
        new
        size 7
        size 7
        size 7
    """)

    assert errors == 2


def test_quit_stops_script(tester):
    run(tester, """
        new
        it a
        quit
        it b
    """)

    assert tester.queue is None
    assert tester.heap.live == 0


def test_truncating_buffer_option(tester, caplog):
    caplog.set_level(logging.INFO)

    errors = run(tester, """
        option length 6
        new
        it abcdefghij
        rh abcde
    """)

    assert errors == 0
    assert "removed abcde from queue" in caplog.text


def test_injected_allocation_failures_are_not_errors(caplog):
    tester = QueueTester(Heap(fail_probability=100))

    errors = run(tester, """
        new
        ih a
    """)

    assert errors == 0
    assert "allocation failure" in caplog.text


def test_partial_allocation_failure_keeps_queue_consistent(tester):
    feed(tester, """
        new
        it a
        it b
    """)
    tester.heap.fail_after = 1

    tester.run_command("it c")
    tester.heap.fail_after = None

    assert list(tester.queue) == ["a", "b"]
    assert run(tester, "size 2\nrh a\nrh b") == 0


def test_corrupted_queue_is_reported(tester, caplog):
    feed(tester, "new\nit a\nit b")
    tester.queue.count = 3

    tester.run_command("show")
    assert tester.error_count == 1
    assert "corrupted queue" in caplog.text
    tester.queue.count = 2
    tester.finish()
    assert tester.heap.live == 0


def test_help_lists_commands(tester, caplog):
    caplog.set_level(logging.INFO)

    tester.run_command("help")

    for cmd in QueueTester.HELP:
        assert cmd in caplog.text


def test_main_runs_script_file(tmp_path):
    script = tmp_path / "script.cmd"
    script.write_text("new\nit a\nrh a\nsize 0\nquit\n")
    root = logging.getLogger()
    handlers = list(root.handlers)

    try:
        status = qtest.main(["-f", str(script), "-v", "0", "-l", str(tmp_path / "qtest.log")])
    finally:
        for handler in root.handlers[:]:
            if handler not in handlers:
                root.removeHandler(handler)

    assert status == 0


def test_main_reports_failure_status(tmp_path):
    script = tmp_path / "script.cmd"
    script.write_text("new\nit a\nsize 4\n")
    root = logging.getLogger()
    handlers = list(root.handlers)

    try:
        status = qtest.main(["-f", str(script), "-v", "0", "-l", str(tmp_path / "qtest.log")])
    finally:
        for handler in root.handlers[:]:
            if handler not in handlers:
                root.removeHandler(handler)

    assert status == 1
