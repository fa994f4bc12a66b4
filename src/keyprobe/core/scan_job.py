"""
One host's probe: configure, connect, read the banner, ask about the key, hang up.

Expected negatives (unreachable host, rejected key) come back as outcomes,
not exceptions. Only ImpossibleOutcomeError escapes ``ScanJob.run``; the
session is still torn down when it does.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Optional

from keyprobe.core.backend import SSHBackend
from keyprobe.core.classifier import classify_auth
from keyprobe.core.credential import Credential
from keyprobe.core.errors import BannerUnavailable, ConfigError, ConnectError, SessionAllocationError
from keyprobe.core.observability import Timer
from keyprobe.core.session import Session
from keyprobe.core.types import ScanOutcome, ScanResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanJob:
    host: str
    credential: Credential
    username: str
    port: str = "22"
    timeout: Optional[float] = None
    backend: Optional[SSHBackend] = field(default=None, repr=False, compare=False)

    def run(self) -> ScanResult:
        with Timer() as timer:
            result = self._probe()
        return replace(result, duration_seconds=round(timer.duration, 3))

    def _probe(self) -> ScanResult:
        try:
            session = Session(self.backend)
        except SessionAllocationError as exc:
            return ScanResult(self.host, ScanOutcome.PROTOCOL_ERROR, message=str(exc))

        with session:
            try:
                session.set_host(self.host).set_port(self.port).set_user(self.username)
                if self.timeout:
                    session.set_timeout(self.timeout)
            except ConfigError as exc:
                logger.info("Rejected target %s: %s", self.host, exc)
                return ScanResult(self.host, ScanOutcome.INVALID_TARGET, message=str(exc))

            try:
                connected = session.connect()
            except ConnectError as exc:
                logger.info("Connection to %s failed: %s", self.host, exc.message)
                return ScanResult(self.host, ScanOutcome.CONNECTION_FAILED, message=exc.message)

            with connected:
                try:
                    banner: Optional[str] = connected.server_banner()
                except BannerUnavailable:
                    banner = None

                outcome = classify_auth(connected.try_publickey(self.credential))
                message = None
                if outcome is ScanOutcome.PROTOCOL_ERROR:
                    message = connected.last_error or "public key probe failed"
                    logger.info("Public key probe against %s failed: %s", self.host, message)
                    connected.disconnect_forced().close()
                else:
                    connected.disconnect().close()

        return ScanResult(self.host, outcome, banner=banner, message=message)
