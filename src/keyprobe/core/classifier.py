from __future__ import annotations

import json
import sys
import threading
from typing import Optional, TextIO

from keyprobe.core.errors import ImpossibleOutcomeError
from keyprobe.core.types import AuthResult, ScanOutcome, ScanResult

_AUTH_OUTCOMES = {
    AuthResult.SUCCESS: ScanOutcome.ACCEPTED,
    AuthResult.PARTIAL: ScanOutcome.PARTIAL,
    AuthResult.DENIED: ScanOutcome.REJECTED,
    AuthResult.ERROR: ScanOutcome.PROTOCOL_ERROR,
}


def classify_auth(result: AuthResult) -> ScanOutcome:
    try:
        return _AUTH_OUTCOMES[result]
    except KeyError:
        raise ImpossibleOutcomeError(result) from None


def report_line(result: ScanResult, output_format: str = "text") -> Optional[str]:
    """Stdout line for a host, or None when the outcome is not reported."""
    if not result.outcome.is_positive:
        return None
    if output_format == "jsonl":
        return json.dumps(result.as_dict(), sort_keys=True)
    if result.banner:
        return f"{result.host} {result.banner}"
    return result.host


def diagnostic_line(result: ScanResult) -> Optional[str]:
    """Stderr line for anomalous outcomes; denied and unreachable hosts stay silent."""
    if not result.outcome.is_anomaly:
        return None
    return f"{result.host}: {result.outcome.value}: {result.message or 'no details'}"


class Reporter:
    """
    Writes report and diagnostic lines from many worker threads.

    Each line is written and flushed under a lock so output from concurrent
    jobs never interleaves mid-line.
    """

    def __init__(
        self,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
        output_format: str = "text",
    ) -> None:
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        self.output_format = output_format
        self._lock = threading.Lock()

    def report(self, result: ScanResult) -> None:
        line = report_line(result, self.output_format)
        if line is not None:
            self._write(self.out, line)
        diagnostic = diagnostic_line(result)
        if diagnostic is not None:
            self._write(self.err, diagnostic)

    def diagnostic(self, host: str, message: str) -> None:
        self._write(self.err, f"{host}: {message}")

    def _write(self, stream: TextIO, line: str) -> None:
        with self._lock:
            stream.write(line + "\n")
            stream.flush()
