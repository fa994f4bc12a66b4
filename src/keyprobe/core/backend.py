"""
The narrow contract keyprobe needs from an SSH client library.

Handles returned by ``new_session`` are opaque: callers only pass them back
into the same backend. Every handle must eventually be passed to ``free``
exactly once; ``keyprobe.core.session`` is the only code that does so.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Protocol

from paramiko import PKey

SSH_OK = 0
SSH_ERROR = -1
SSH_AGAIN = -2


class SessionOption(str, Enum):
    HOST = "host"
    PORT = "port"
    USER = "user"
    TIMEOUT = "timeout"


class SSHBackend(Protocol):
    def new_session(self) -> Optional[Any]:
        ...

    def options_set(self, handle: Any, option: SessionOption, value: str) -> int:
        ...

    def connect(self, handle: Any) -> int:
        ...

    def get_error(self, handle: Any) -> str:
        ...

    def get_server_banner(self, handle: Any) -> Optional[str]:
        ...

    def userauth_try_publickey(self, handle: Any, key: PKey) -> int:
        ...

    def disconnect(self, handle: Any) -> None:
        ...

    def silent_disconnect(self, handle: Any) -> None:
        ...

    def free(self, handle: Any) -> None:
        ...


def default_backend() -> SSHBackend:
    from keyprobe.core.paramiko_backend import ParamikoBackend

    return ParamikoBackend()
