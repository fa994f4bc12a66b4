"""
Per-host SSH session with phase-checked operations.

Each phase has its own class: ``Session`` can be configured and connected,
``ConnectedSession`` can read the banner, probe a key and disconnect.
A transition moves the single backend handle into the session it returns and
leaves the source consumed, so every later call on the source raises
``SessionStateError`` before touching the backend.

The handle is released exactly once whatever path the session takes:
``close()``, leaving a ``with`` block and garbage collection all funnel into
one ``weakref.finalize`` callback, which never runs twice.
"""

from __future__ import annotations

import logging
import weakref
from enum import Enum
from typing import Any, Optional, Union

from keyprobe.core.backend import SSH_OK, SessionOption, SSHBackend, default_backend
from keyprobe.core.credential import Credential
from keyprobe.core.errors import (
    BannerUnavailable,
    ConfigError,
    ConnectError,
    ImpossibleOutcomeError,
    SessionAllocationError,
    SessionStateError,
)
from keyprobe.core.types import AuthResult

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    UNCONFIGURED = "unconfigured"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CONSUMED = "consumed"
    CLOSED = "closed"


class _HandleOwner:
    """Single release point for one backend session handle."""

    def __init__(self, backend: SSHBackend) -> None:
        raw = backend.new_session()
        if raw is None:
            raise SessionAllocationError("SSH backend could not allocate a session")
        self.backend = backend
        self.raw = raw
        self._finalizer = weakref.finalize(self, backend.free, raw)

    @property
    def released(self) -> bool:
        return not self._finalizer.alive

    def release(self) -> None:
        self._finalizer()


class _SessionBase:
    def __init__(self, owner: _HandleOwner, phase: SessionPhase) -> None:
        self._owner: Optional[_HandleOwner] = owner
        self._phase = phase

    @classmethod
    def _adopt(cls, owner: _HandleOwner, phase: SessionPhase):
        session = cls.__new__(cls)
        _SessionBase.__init__(session, owner, phase)
        return session

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def last_error(self) -> str:
        if self._owner is None:
            return ""
        return self._owner.backend.get_error(self._owner.raw)

    def _require(self, operation: str, *phases: SessionPhase) -> _HandleOwner:
        if self._owner is None or self._phase not in phases:
            raise SessionStateError(f"{operation}() is not valid on a {self._phase.value} session")
        return self._owner

    def _move(self, operation: str) -> _HandleOwner:
        owner, self._owner = self._owner, None
        if owner is None:
            raise SessionStateError(f"{operation}() is not valid on a {self._phase.value} session")
        self._phase = SessionPhase.CONSUMED
        return owner

    def close(self) -> None:
        """Release the backend handle. Safe to call in any phase, any number of times."""
        owner, self._owner = self._owner, None
        if owner is not None:
            owner.release()
            self._phase = SessionPhase.CLOSED

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} phase={self._phase.value}>"


class Session(_SessionBase):
    """A session that is not connected: freshly created, or disconnected and reusable."""

    def __init__(self, backend: Optional[SSHBackend] = None) -> None:
        super().__init__(_HandleOwner(backend or default_backend()), SessionPhase.UNCONFIGURED)

    def configure(self, option: Union[SessionOption, str], value: Any) -> "Session":
        owner = self._require("configure", SessionPhase.UNCONFIGURED, SessionPhase.DISCONNECTED)
        option = SessionOption(option)
        if owner.backend.options_set(owner.raw, option, str(value)) != SSH_OK:
            raise ConfigError(option.value, value, owner.backend.get_error(owner.raw) or "rejected")
        return self

    def set_host(self, host: str) -> "Session":
        return self.configure(SessionOption.HOST, host)

    def set_port(self, port: Union[str, int]) -> "Session":
        return self.configure(SessionOption.PORT, port)

    def set_user(self, username: str) -> "Session":
        return self.configure(SessionOption.USER, username)

    def set_timeout(self, seconds: float) -> "Session":
        return self.configure(SessionOption.TIMEOUT, seconds)

    def connect(self) -> "ConnectedSession":
        """
        Open the connection and run the handshake up to server identification.

        On success this session is consumed and the returned ConnectedSession
        owns the handle. On failure ConnectError is raised and this session
        only accepts ``close()``.
        """
        owner = self._require("connect", SessionPhase.UNCONFIGURED, SessionPhase.DISCONNECTED)
        code = owner.backend.connect(owner.raw)
        if code != SSH_OK:
            self._phase = SessionPhase.FAILED
            raise ConnectError(code, owner.backend.get_error(owner.raw) or "unknown error")
        return ConnectedSession._adopt(self._move("connect"), SessionPhase.CONNECTED)


class ConnectedSession(_SessionBase):
    def server_banner(self) -> str:
        owner = self._require("server_banner", SessionPhase.CONNECTED)
        banner = owner.backend.get_server_banner(owner.raw)
        if banner is None:
            raise BannerUnavailable("server did not provide a banner")
        return banner

    def try_publickey(self, credential: Credential) -> AuthResult:
        """
        Ask the server, once and without signing, whether it would accept the key.

        Returns SUCCESS, PARTIAL, DENIED or ERROR. Any other code cannot happen
        in a blocking, non-interactive probe and raises ImpossibleOutcomeError.
        """
        owner = self._require("try_publickey", SessionPhase.CONNECTED)
        code = owner.backend.userauth_try_publickey(owner.raw, credential.key)
        try:
            result = AuthResult(code)
        except ValueError:
            raise ImpossibleOutcomeError(code) from None
        if result in (AuthResult.INFO, AuthResult.AGAIN):
            raise ImpossibleOutcomeError(result, "probe runs in blocking mode without prompts")
        return result

    def disconnect(self) -> Session:
        """Close the connection at protocol level; the returned session can be reconfigured."""
        owner = self._require("disconnect", SessionPhase.CONNECTED)
        owner.backend.disconnect(owner.raw)
        return Session._adopt(self._move("disconnect"), SessionPhase.DISCONNECTED)

    def disconnect_forced(self) -> Session:
        """Drop the socket without a protocol goodbye."""
        owner = self._require("disconnect_forced", SessionPhase.CONNECTED)
        owner.backend.silent_disconnect(owner.raw)
        return Session._adopt(self._move("disconnect_forced"), SessionPhase.DISCONNECTED)

    def close(self) -> None:
        try:
            if self._owner is not None and self._phase is SessionPhase.CONNECTED:
                self._owner.backend.silent_disconnect(self._owner.raw)
        finally:
            super().close()
