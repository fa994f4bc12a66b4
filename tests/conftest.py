from __future__ import annotations

import os
import sys
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

# Keep the developer's .env and KEYPROBE_* environment out of the test run.
for _name in [name for name in os.environ if name.startswith("KEYPROBE_")]:
    del os.environ[_name]

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from keyprobe.core.backend import SSH_ERROR, SSH_OK, SessionOption  # noqa: E402
from keyprobe.core.credential import Credential  # noqa: E402
from keyprobe.core.types import AuthResult, KeyType  # noqa: E402


def openssh_line(public_key) -> str:
    return public_key.public_bytes(
        serialization.Encoding.OpenSSH, serialization.PublicFormat.OpenSSH
    ).decode("ascii")


@pytest.fixture(scope="session")
def ed25519_line() -> str:
    return openssh_line(ed25519.Ed25519PrivateKey.generate().public_key())


@pytest.fixture(scope="session")
def rsa_line() -> str:
    return openssh_line(rsa.generate_private_key(public_exponent=65537, key_size=2048).public_key())


@pytest.fixture(scope="session")
def ecdsa_line() -> str:
    return openssh_line(ec.generate_private_key(ec.SECP256R1()).public_key())


@pytest.fixture
def credential(ed25519_line: str) -> Credential:
    return Credential.from_base64(ed25519_line.split()[1], KeyType.ED25519)


_AUTH_CODES = {
    "accept": AuthResult.SUCCESS,
    "no-banner": AuthResult.SUCCESS,
    "partial": AuthResult.PARTIAL,
    "deny": AuthResult.DENIED,
    "error": AuthResult.ERROR,
    "info": AuthResult.INFO,
    "again": AuthResult.AGAIN,
    "weird": 42,
}


@dataclass
class FakeHandle:
    id: int
    options: Dict[SessionOption, str] = field(default_factory=dict)
    connected: bool = False
    error: str = ""


class FakeBackend:
    """
    Scripted SSHBackend for tests.

    ``behaviours`` maps a host to one of: accept, partial, deny, unreachable,
    error, no-banner, info, again, weird, raise. Unknown hosts are denied.
    Every handle allocation, release and post-release access is recorded.
    """

    banner = "SSH-2.0-FakeSSH_1.0"

    def __init__(self, behaviours: Optional[Dict[str, str]] = None, delay: float = 0.0) -> None:
        self.behaviours = behaviours or {}
        self.delay = delay
        self.fail_alloc = False
        self._lock = threading.Lock()
        self.allocated: List[FakeHandle] = []
        self.freed: Counter = Counter()
        self.use_after_free: List[str] = []
        self.graceful: List[str] = []
        self.forced: List[str] = []
        self.probed: List[str] = []
        self.keys_seen: List[object] = []
        self.active = 0
        self.max_active = 0

    # --- SSHBackend -------------------------------------------------------
    def new_session(self) -> Optional[FakeHandle]:
        if self.fail_alloc:
            return None
        with self._lock:
            handle = FakeHandle(id=len(self.allocated) + 1)
            self.allocated.append(handle)
        return handle

    def options_set(self, handle: FakeHandle, option: SessionOption, value: str) -> int:
        self._check(handle, "options_set")
        if not value or any(ch.isspace() for ch in value):
            handle.error = f"invalid {option.value} value {value!r}"
            return SSH_ERROR
        handle.options[option] = value
        return SSH_OK

    def connect(self, handle: FakeHandle) -> int:
        self._check(handle, "connect")
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
        finally:
            with self._lock:
                self.active -= 1
        if self._behaviour(handle) == "unreachable":
            handle.error = "Connection refused"
            return SSH_ERROR
        handle.connected = True
        return SSH_OK

    def get_error(self, handle: FakeHandle) -> str:
        return handle.error

    def get_server_banner(self, handle: FakeHandle) -> Optional[str]:
        self._check(handle, "get_server_banner")
        if not handle.connected or self._behaviour(handle) == "no-banner":
            return None
        return self.banner

    def userauth_try_publickey(self, handle: FakeHandle, key) -> int:
        self._check(handle, "userauth_try_publickey")
        behaviour = self._behaviour(handle)
        with self._lock:
            self.probed.append(handle.options.get(SessionOption.HOST, ""))
            self.keys_seen.append(key)
        if behaviour == "raise":
            raise RuntimeError("backend exploded")
        if behaviour == "error":
            handle.error = "Socket error: disconnected"
        return _AUTH_CODES.get(behaviour, AuthResult.DENIED)

    def disconnect(self, handle: FakeHandle) -> None:
        self._check(handle, "disconnect")
        handle.connected = False
        with self._lock:
            self.graceful.append(handle.options.get(SessionOption.HOST, ""))

    def silent_disconnect(self, handle: FakeHandle) -> None:
        self._check(handle, "silent_disconnect")
        handle.connected = False
        with self._lock:
            self.forced.append(handle.options.get(SessionOption.HOST, ""))

    def free(self, handle: FakeHandle) -> None:
        with self._lock:
            self.freed[handle.id] += 1

    # --- helpers ----------------------------------------------------------
    def _behaviour(self, handle: FakeHandle) -> str:
        return self.behaviours.get(handle.options.get(SessionOption.HOST, ""), "deny")

    def _check(self, handle: FakeHandle, call: str) -> None:
        if self.freed[handle.id]:
            with self._lock:
                self.use_after_free.append(f"{call}:{handle.id}")

    def leaked(self) -> List[int]:
        return [h.id for h in self.allocated if self.freed[h.id] == 0]

    def double_freed(self) -> List[int]:
        return [hid for hid, count in self.freed.items() if count > 1]

    def assert_clean(self) -> None:
        assert self.leaked() == []
        assert self.double_freed() == []
        assert self.use_after_free == []


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
