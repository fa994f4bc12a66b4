import io
import threading
from concurrent.futures import ThreadPoolExecutor

from keyprobe.core import dispatcher as dispatcher_module
from keyprobe.core.classifier import Reporter
from keyprobe.core.dispatcher import ScanDispatcher, read_hosts
from keyprobe.core.types import ScanOutcome


def _dispatcher(backend, credential, workers=1, **kwargs):
    out, err = io.StringIO(), io.StringIO()
    dispatcher = ScanDispatcher(
        credential,
        username="audit",
        workers=workers,
        backend=backend,
        reporter=Reporter(out=out, err=err),
        **kwargs,
    )
    return dispatcher, out, err


def test_read_hosts_stops_at_blank_line():
    stream = io.StringIO("a.example\n  b.example  \n\nc.example\n")
    assert list(read_hosts(stream)) == ["a.example", "b.example"]
    # the line after the blank one is left unread
    assert stream.readline() == "c.example\n"


def test_read_hosts_stops_at_end_of_stream():
    assert list(read_hosts(io.StringIO("a.example\nb.example"))) == ["a.example", "b.example"]
    assert list(read_hosts(io.StringIO(""))) == []


def test_sequential_pool_runs_every_job(backend, credential):
    hosts = [f"h{i}.example" for i in range(6)]
    for host in hosts:
        backend.behaviours[host] = "accept"
    dispatcher, out, _ = _dispatcher(backend, credential, workers=1)
    summary = dispatcher.run(iter(hosts))
    assert summary.submitted == 6
    assert summary.completed == 6
    assert backend.max_active == 1
    # one worker keeps input order
    assert [line.split()[0] for line in out.getvalue().splitlines()] == hosts
    backend.assert_clean()


def test_bounded_pool_completes_each_job_once(backend, credential):
    backend.delay = 0.02
    hosts = [f"h{i}.example" for i in range(20)]
    for host in hosts:
        backend.behaviours[host] = "accept"
    dispatcher, out, _ = _dispatcher(backend, credential, workers=3)
    summary = dispatcher.run(hosts)
    assert summary.completed == 20
    assert summary.failed == 0
    assert summary.count(ScanOutcome.ACCEPTED) == 20
    assert sorted(line.split()[0] for line in out.getvalue().splitlines()) == sorted(hosts)
    assert sorted(backend.probed) == sorted(hosts)
    assert 1 < backend.max_active <= 3
    backend.assert_clean()


def test_mixed_fleet_scenario(backend, credential):
    backend.behaviours.update(
        {
            "good.example": "accept",
            "bad.example": "unreachable",
            "neutral.example": "deny",
        }
    )
    dispatcher, out, err = _dispatcher(backend, credential, workers=2)
    summary = dispatcher.run(["good.example", "bad.example", "neutral.example"])
    assert out.getvalue() == f"good.example {backend.banner}\n"
    assert err.getvalue() == ""
    assert summary.count(ScanOutcome.CONNECTION_FAILED) == 1
    assert summary.count(ScanOutcome.REJECTED) == 1
    backend.assert_clean()


def test_one_broken_host_does_not_stop_the_others(backend, credential):
    backend.behaviours.update(
        {
            "a.example": "accept",
            "flaky.example": "error",
            "boom.example": "raise",
            "odd.example": "info",
            "b.example": "accept",
        }
    )
    dispatcher, out, err = _dispatcher(backend, credential, workers=2)
    summary = dispatcher.run(["a.example", "flaky.example", "boom.example", "odd.example", "b.example"])
    assert sorted(out.getvalue().splitlines()) == [
        f"a.example {backend.banner}",
        f"b.example {backend.banner}",
    ]
    diagnostics = err.getvalue()
    assert "flaky.example: protocol_error" in diagnostics
    assert "boom.example: unexpected failure: backend exploded" in diagnostics
    assert "odd.example: fatal:" in diagnostics
    assert summary.submitted == 5
    assert summary.completed == 3
    assert summary.failed == 2
    assert summary.contract_violations == 1
    backend.assert_clean()


def test_submission_blocks_when_pending_limit_reached(backend, credential):
    release = threading.Event()
    started = threading.Semaphore(0)
    original_connect = backend.connect

    def slow_connect(handle):
        started.release()
        release.wait(2)
        return original_connect(handle)

    backend.connect = slow_connect
    read = []

    def hosts():
        for i in range(5):
            read.append(i)
            yield f"h{i}.example"

    dispatcher, _, _ = _dispatcher(backend, credential, workers=1, max_pending=2)
    runner = threading.Thread(target=dispatcher.run, args=(hosts(),))
    runner.start()
    assert started.acquire(timeout=2)
    # one job running, one queued, the producer waits on the third
    assert len(read) <= 3
    release.set()
    runner.join(5)
    assert not runner.is_alive()
    assert dispatcher.metrics.snapshot()["completed"] == 5


def test_interrupt_cancels_pending_work(backend, credential):
    def hosts():
        yield "a.example"
        raise KeyboardInterrupt

    dispatcher, _, _ = _dispatcher(backend, credential, workers=1)
    summary = dispatcher.run(hosts())
    assert summary.interrupted is True
    assert summary.submitted == 1
    assert summary.completed + summary.failed <= 1
    backend.assert_clean()


class _InterruptOnFirstJoin(ThreadPoolExecutor):
    joins = 0

    def shutdown(self, wait=True, *, cancel_futures=False):
        type(self).joins += 1
        if type(self).joins == 1:
            raise KeyboardInterrupt
        super().shutdown(wait=wait, cancel_futures=cancel_futures)


def test_interrupt_while_waiting_for_running_jobs(monkeypatch, backend, credential):
    monkeypatch.setattr(_InterruptOnFirstJoin, "joins", 0)
    monkeypatch.setattr(dispatcher_module, "ThreadPoolExecutor", _InterruptOnFirstJoin)
    dispatcher, _, _ = _dispatcher(backend, credential, workers=2)
    summary = dispatcher.run(["a.example", "b.example"])
    assert summary.interrupted is True
    assert _InterruptOnFirstJoin.joins == 2
    assert summary.completed + summary.failed <= 2
    backend.assert_clean()
