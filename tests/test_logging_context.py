"""Tests for logging context propagation."""

import threading

from coralqueue.logging.context import (
    clear_log_context,
    get_log_context,
    log_context,
    pop_log_context,
    push_log_context,
)


def test_empty_context():
    assert get_log_context() == {}


def test_push_and_pop():
    token = push_log_context(run_id="a1b2", job_id="job-1")
    assert get_log_context() == {"run_id": "a1b2", "job_id": "job-1"}

    pop_log_context(token)
    assert get_log_context() == {}


def test_nested_push_restores_each_layer():
    token1 = push_log_context(run_id="a1b2")
    token2 = push_log_context(job_id="job-1")
    token3 = push_log_context(run_id="c3d4")

    assert get_log_context() == {"run_id": "c3d4", "job_id": "job-1"}

    pop_log_context(token3)
    assert get_log_context() == {"run_id": "a1b2", "job_id": "job-1"}

    pop_log_context(token2)
    pop_log_context(token1)
    assert get_log_context() == {}


def test_context_manager_nested():
    with log_context(run_id="a1b2"):
        with log_context(job_id="job-1", notification_type="BULLETIN"):
            assert get_log_context() == {
                "run_id": "a1b2",
                "job_id": "job-1",
                "notification_type": "BULLETIN",
            }
        assert get_log_context() == {"run_id": "a1b2"}

    assert get_log_context() == {}


def test_context_manager_restores_on_exception():
    try:
        with log_context(run_id="a1b2"):
            raise RuntimeError("send failed")
    except RuntimeError:
        pass

    assert get_log_context() == {}


def test_clear_context():
    push_log_context(run_id="a1b2")
    clear_log_context()
    assert get_log_context() == {}


def test_returned_context_is_a_copy():
    with log_context(run_id="a1b2"):
        context = get_log_context()
        context["job_id"] = "mutated"

        assert get_log_context() == {"run_id": "a1b2"}


def test_threads_do_not_share_context():
    seen = {}

    def worker(name):
        with log_context(job_id=name):
            barrier.wait()
            seen[name] = get_log_context()

    barrier = threading.Barrier(2)
    threads = [threading.Thread(target=worker, args=(name,)) for name in ("job-a", "job-b")]
    with log_context(run_id="main"):
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    assert seen["job-a"] == {"job_id": "job-a"}
    assert seen["job-b"] == {"job_id": "job-b"}
