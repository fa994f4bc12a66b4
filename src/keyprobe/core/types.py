from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Optional


class KeyType(str, Enum):
    RSA = "ssh-rsa"
    ED25519 = "ssh-ed25519"
    ECDSA_P256 = "ecdsa-sha2-nistp256"
    ECDSA_P384 = "ecdsa-sha2-nistp384"
    ECDSA_P521 = "ecdsa-sha2-nistp521"

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]

    @classmethod
    def from_name(cls, name: str) -> "KeyType":
        """Accept either the short CLI name (``ecdsa-p256``) or the wire name."""
        lowered = name.strip().lower()
        for member in cls:
            if lowered in (member.value, _SHORT_NAMES[member]):
                return member
        raise ValueError(f"unsupported key type: {name!r}")


_SHORT_NAMES = {
    KeyType.RSA: "rsa",
    KeyType.ED25519: "ed25519",
    KeyType.ECDSA_P256: "ecdsa-p256",
    KeyType.ECDSA_P384: "ecdsa-p384",
    KeyType.ECDSA_P521: "ecdsa-p521",
}


class AuthResult(IntEnum):
    """Public key probe outcome codes returned by the SSH backend."""

    ERROR = -1
    SUCCESS = 0
    DENIED = 1
    PARTIAL = 2
    INFO = 3
    AGAIN = 4


class ScanOutcome(str, Enum):
    ACCEPTED = "accepted"
    PARTIAL = "partial"
    REJECTED = "rejected"
    CONNECTION_FAILED = "connection_failed"
    INVALID_TARGET = "invalid_target"
    PROTOCOL_ERROR = "protocol_error"

    @property
    def is_positive(self) -> bool:
        return self in (ScanOutcome.ACCEPTED, ScanOutcome.PARTIAL)

    @property
    def is_anomaly(self) -> bool:
        return self in (ScanOutcome.INVALID_TARGET, ScanOutcome.PROTOCOL_ERROR)


@dataclass(frozen=True)
class ScanResult:
    """Result of probing one host. Never mutated after the job produces it."""

    host: str
    outcome: ScanOutcome
    banner: Optional[str] = None
    message: Optional[str] = None
    duration_seconds: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["outcome"] = self.outcome.value
        payload["partial"] = self.outcome is ScanOutcome.PARTIAL
        return payload


@dataclass
class ScanSummary:
    submitted: int = 0
    completed: int = 0
    failed: int = 0
    contract_violations: int = 0
    interrupted: bool = False
    duration_seconds: float = 0.0
    outcomes: Dict[str, int] = field(default_factory=dict)

    def count(self, outcome: ScanOutcome) -> int:
        return self.outcomes.get(outcome.value, 0)
