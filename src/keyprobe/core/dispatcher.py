"""
Fan host names out over a fixed pool of worker threads.

The producer (``run``) reads hosts on the calling thread and blocks once
``max_pending`` jobs are queued or running, so a long host list never turns
into an unbounded backlog. ``run`` only returns after every submitted job
has finished. On Ctrl-C it stops reading, cancels jobs that have not started
and waits for the ones already talking to a server.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Iterator, Optional, TextIO

from keyprobe.core.backend import SSHBackend
from keyprobe.core.classifier import Reporter
from keyprobe.core.credential import Credential
from keyprobe.core.errors import ImpossibleOutcomeError
from keyprobe.core.observability import Metrics, Timer, log_event
from keyprobe.core.scan_job import ScanJob
from keyprobe.core.types import ScanResult, ScanSummary

logger = logging.getLogger(__name__)


def read_hosts(stream: TextIO) -> Iterator[str]:
    """Yield one host per line until a blank line or end of input."""
    for line in iter(stream.readline, ""):
        host = line.strip()
        if not host:
            return
        yield host


class ScanDispatcher:
    def __init__(
        self,
        credential: Credential,
        *,
        username: str,
        port: str = "22",
        workers: int = 1,
        timeout: Optional[float] = None,
        max_pending: int = 0,
        backend: Optional[SSHBackend] = None,
        reporter: Optional[Reporter] = None,
    ) -> None:
        """
        Args:
            credential: Shared, read-only key probed against every host.
            username: Remote account name used for every host.
            port: Remote port, as a decimal string.
            workers: Number of worker threads (1 scans strictly sequentially).
            timeout: Per-connection timeout in seconds; None blocks indefinitely.
            max_pending: Cap on jobs queued or running; 0 means twice ``workers``.
            backend: SSH backend; defaults to paramiko.
            reporter: Output sink; defaults to stdout/stderr text.
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.credential = credential
        self.username = username
        self.port = port
        self.workers = workers
        self.timeout = timeout
        self.max_pending = max(max_pending or workers * 2, workers)
        self.backend = backend
        self.reporter = reporter or Reporter()
        self.metrics = Metrics()
        self._lock = threading.Lock()
        self._contract_violations = 0

    def run(self, hosts: Iterable[str]) -> ScanSummary:
        summary = ScanSummary()
        slots = threading.BoundedSemaphore(self.max_pending)
        log_event(
            logger,
            "keyprobe_scan_start",
            workers=self.workers,
            max_pending=self.max_pending,
            port=self.port,
            key=self.credential.fingerprint,
        )

        with Timer() as timer:
            executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="keyprobe-worker")
            try:
                for host in hosts:
                    slots.acquire()
                    future = executor.submit(self._run_job, host)
                    future.add_done_callback(lambda _: slots.release())
                    summary.submitted += 1
            except KeyboardInterrupt:
                self._interrupted(summary)
            finally:
                self._join(executor, summary)

        snapshot = self.metrics.snapshot()
        summary.completed = snapshot["completed"]
        summary.failed = snapshot["failed"]
        summary.outcomes = snapshot["outcomes"]
        summary.duration_seconds = round(timer.duration, 3)
        with self._lock:
            summary.contract_violations = self._contract_violations
        log_event(
            logger,
            "keyprobe_scan_complete",
            submitted=summary.submitted,
            completed=summary.completed,
            failed=summary.failed,
            outcomes=summary.outcomes,
            contract_violations=summary.contract_violations,
            interrupted=summary.interrupted,
            duration_ms=round(timer.duration * 1000, 2),
        )
        return summary

    def _interrupted(self, summary: ScanSummary) -> None:
        if not summary.interrupted:
            summary.interrupted = True
            log_event(logger, "keyprobe_scan_interrupted", submitted=summary.submitted)

    def _join(self, executor: ThreadPoolExecutor, summary: ScanSummary) -> None:
        """Wait for in-flight jobs; once interrupted, queued jobs are dropped."""
        while True:
            try:
                executor.shutdown(wait=True, cancel_futures=summary.interrupted)
                return
            except KeyboardInterrupt:
                self._interrupted(summary)

    def _run_job(self, host: str) -> Optional[ScanResult]:
        self.metrics.record_started()
        job = ScanJob(
            host=host,
            credential=self.credential,
            username=self.username,
            port=self.port,
            timeout=self.timeout,
            backend=self.backend,
        )
        failure: Optional[str] = None
        with Timer() as timer:
            try:
                result = job.run()
            except ImpossibleOutcomeError as exc:
                with self._lock:
                    self._contract_violations += 1
                logger.error("SSH library contract violation while scanning %s: %s", host, exc)
                failure = f"fatal: {exc}"
            except Exception as exc:  # Catch-all to prevent a single host from killing the batch
                logger.exception("Unhandled error while scanning %s", host)
                failure = f"unexpected failure: {exc}"

        if failure is not None:
            self.metrics.record_failed(timer.duration)
            self.reporter.diagnostic(host, failure)
            return None

        self.metrics.record_finished(result.outcome.value, result.duration_seconds)
        self.reporter.report(result)
        log_event(
            logger,
            "keyprobe_host_complete",
            host=host,
            outcome=result.outcome.value,
            duration_ms=round(result.duration_seconds * 1000, 2),
        )
        return result
