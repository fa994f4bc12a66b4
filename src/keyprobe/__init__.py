"""keyprobe: find the SSH servers in a fleet that accept a given public key."""

from keyprobe.core.credential import Credential, InlineKey, KeyFile
from keyprobe.core.dispatcher import ScanDispatcher, read_hosts
from keyprobe.core.scan_job import ScanJob
from keyprobe.core.session import ConnectedSession, Session, SessionPhase
from keyprobe.core.types import AuthResult, KeyType, ScanOutcome, ScanResult, ScanSummary

__version__ = "0.1.0"

__all__ = [
    "AuthResult",
    "ConnectedSession",
    "Credential",
    "InlineKey",
    "KeyFile",
    "KeyType",
    "ScanDispatcher",
    "ScanJob",
    "ScanOutcome",
    "ScanResult",
    "ScanSummary",
    "Session",
    "SessionPhase",
    "read_hosts",
]
