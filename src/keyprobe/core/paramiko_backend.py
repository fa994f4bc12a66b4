"""
SSHBackend implemented on paramiko's Transport.

paramiko's own ``auth_publickey`` always signs the request, which needs the
private key. keyprobe only holds a public key, so the probe swaps in an
AuthHandler that sends the unsigned query form of the publickey request and
reads the server's answer (PK_OK, FAILURE or SUCCESS).
"""

from __future__ import annotations

import getpass
import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional

import paramiko
from paramiko.auth_handler import AuthHandler
from paramiko.common import MSG_DISCONNECT, cMSG_USERAUTH_REQUEST
from paramiko.message import Message
from paramiko.ssh_exception import SSHException

from keyprobe.core.backend import SSH_ERROR, SSH_OK, SessionOption
from keyprobe.core.types import AuthResult

logger = logging.getLogger(__name__)

_DISCONNECT_BY_APPLICATION = 11


@dataclass
class ParamikoHandle:
    host: Optional[str] = None
    port: int = 22
    username: Optional[str] = None
    timeout: Optional[float] = None
    sock: Optional[socket.socket] = None
    transport: Optional[paramiko.Transport] = None
    error: str = ""
    freed: bool = False


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return text if text else exc.__class__.__name__


class _PublicKeyProbe(AuthHandler):
    """Publickey auth in query mode: has_signature is FALSE, nothing is signed."""

    def __init__(self, transport: paramiko.Transport) -> None:
        super().__init__(transport)
        self.result: Optional[AuthResult] = None

    def start(self, username: str, key: paramiko.PKey, event: threading.Event) -> None:
        with self.transport.lock:
            self.auth_event = event
            self.auth_method = "publickey"
            self.username = username
            self.private_key = key
            self._request_auth()

    def wait(self, event: threading.Event, timeout: Optional[float]) -> AuthResult:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not event.wait(0.1):
            if not self.transport.is_active():
                exc = self.transport.get_exception()
                if exc is None:
                    raise SSHException("connection closed during public key probe")
                raise SSHException(f"connection lost during public key probe: {_describe(exc)}")
            if deadline is not None and time.monotonic() >= deadline:
                raise SSHException("public key probe timed out")
        if self.result is None:
            raise SSHException("public key probe finished without an answer")
        return self.result

    def _parse_service_accept(self, m: Message) -> None:
        service = m.get_text()
        if service != "ssh-userauth":
            logger.debug("Ignoring accept for unexpected service %r", service)
            return
        key = self.private_key
        algorithm = self._finalize_pubkey_algorithm(key.get_name())
        request = Message()
        request.add_byte(cMSG_USERAUTH_REQUEST)
        request.add_string(self.username)
        request.add_string("ssh-connection")
        request.add_string("publickey")
        request.add_boolean(False)
        request.add_string(algorithm)
        request.add_string(key.asbytes())
        self.transport._send_message(request)

    # SSH_MSG_USERAUTH_PK_OK reuses message number 60 (USERAUTH_INFO_REQUEST)
    def _parse_userauth_info_request(self, m: Message) -> None:
        self._finish(AuthResult.SUCCESS)

    def _parse_userauth_success(self, m: Message) -> None:
        self._finish(AuthResult.SUCCESS)

    def _parse_userauth_failure(self, m: Message) -> None:
        m.get_list()
        partial = m.get_boolean()
        self._finish(AuthResult.PARTIAL if partial else AuthResult.DENIED)

    def _finish(self, result: AuthResult) -> None:
        self.result = result
        if self.auth_event is not None:
            self.auth_event.set()


class ParamikoBackend:
    """Stateless; all per-connection state lives in the ParamikoHandle."""

    def new_session(self) -> ParamikoHandle:
        return ParamikoHandle()

    def options_set(self, handle: ParamikoHandle, option: SessionOption, value: str) -> int:
        try:
            option = SessionOption(option)
        except ValueError:
            handle.error = f"unknown option {option!r}"
            return SSH_ERROR
        try:
            if option is SessionOption.HOST:
                handle.host = self._parse_host(value)
            elif option is SessionOption.PORT:
                handle.port = self._parse_port(value)
            elif option is SessionOption.USER:
                handle.username = self._parse_user(value)
            else:
                handle.timeout = self._parse_timeout(value)
        except ValueError as exc:
            handle.error = str(exc)
            return SSH_ERROR
        return SSH_OK

    @staticmethod
    def _parse_host(value: str) -> str:
        host = str(value).strip()
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        if not host:
            raise ValueError("host must not be empty")
        if "\x00" in host or any(ch.isspace() for ch in host):
            raise ValueError(f"host contains illegal characters: {value!r}")
        try:
            host.encode("idna")
        except UnicodeError:
            raise ValueError(f"host is not a valid DNS name: {value!r}") from None
        return host

    @staticmethod
    def _parse_port(value: str) -> int:
        text = str(value).strip()
        if not text.isdecimal():
            raise ValueError(f"port must be a decimal number: {value!r}")
        port = int(text)
        if not 0 < port < 65536:
            raise ValueError(f"port out of range: {port}")
        return port

    @staticmethod
    def _parse_user(value: str) -> str:
        user = str(value)
        if not user or "\x00" in user:
            raise ValueError(f"invalid username: {value!r}")
        return user

    @staticmethod
    def _parse_timeout(value: str) -> float:
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"timeout must be a number: {value!r}") from None
        if timeout <= 0:
            raise ValueError(f"timeout must be positive: {value!r}")
        return timeout

    def connect(self, handle: ParamikoHandle) -> int:
        if handle.transport is not None:
            handle.error = "session is already connected"
            return SSH_ERROR
        if not handle.host:
            handle.error = "no host configured"
            return SSH_ERROR

        sock = None
        transport = None
        try:
            sock = socket.create_connection((handle.host, handle.port), timeout=handle.timeout)
            transport = paramiko.Transport(sock)
            if handle.timeout is not None:
                transport.banner_timeout = handle.timeout
                transport.handshake_timeout = handle.timeout
                transport.auth_timeout = handle.timeout
            handshake = threading.Event()
            transport.start_client(event=handshake)
            if not handshake.wait(handle.timeout):
                raise SSHException("handshake timed out")
            if not transport.is_active():
                exc = transport.get_exception()
                raise SSHException(_describe(exc) if exc is not None else "handshake failed")
        except (OSError, SSHException, EOFError) as exc:
            handle.error = _describe(exc)
            logger.debug("Connection to %s:%s failed: %s", handle.host, handle.port, handle.error)
            if transport is not None:
                transport.close()
            elif sock is not None:
                sock.close()
            return SSH_ERROR

        handle.sock = sock
        handle.transport = transport
        return SSH_OK

    def get_error(self, handle: ParamikoHandle) -> str:
        return handle.error

    def get_server_banner(self, handle: ParamikoHandle) -> Optional[str]:
        if handle.transport is None:
            return None
        return handle.transport.remote_version or None

    def userauth_try_publickey(self, handle: ParamikoHandle, key: paramiko.PKey) -> int:
        transport = handle.transport
        if transport is None or not transport.is_active():
            handle.error = "session is not connected"
            return AuthResult.ERROR

        event = threading.Event()
        probe = _PublicKeyProbe(transport)
        transport.auth_handler = probe
        try:
            probe.start(handle.username or getpass.getuser(), key, event)
            return probe.wait(event, handle.timeout)
        except (SSHException, OSError, EOFError) as exc:
            handle.error = _describe(exc)
            return AuthResult.ERROR

    def disconnect(self, handle: ParamikoHandle) -> None:
        transport = handle.transport
        if transport is not None and transport.is_active():
            msg = Message()
            msg.add_byte(bytes([MSG_DISCONNECT]))
            msg.add_int(_DISCONNECT_BY_APPLICATION)
            msg.add_string("disconnected by user")
            msg.add_string("")
            try:
                transport._send_message(msg)
            except (OSError, SSHException, EOFError) as exc:
                logger.debug("Could not send disconnect to %s: %s", handle.host, exc)
        self._close(handle)

    def silent_disconnect(self, handle: ParamikoHandle) -> None:
        self._close(handle)

    def free(self, handle: ParamikoHandle) -> None:
        self._close(handle)
        handle.freed = True

    @staticmethod
    def _close(handle: ParamikoHandle) -> None:
        transport, handle.transport = handle.transport, None
        sock, handle.sock = handle.sock, None
        if transport is not None:
            transport.close()
        elif sock is not None:
            sock.close()
