"""
Exception taxonomy for keyprobe.

Credential errors are fatal at startup. Everything raised from a session is
scoped to one host and is turned into a per-host outcome by the scan job or
the dispatcher, except ImpossibleOutcomeError which marks a broken contract
with the SSH library and is surfaced loudly.
"""

from __future__ import annotations

from typing import Optional


class KeyprobeError(Exception):
    """Base class for all keyprobe errors."""


class CredentialError(KeyprobeError):
    """The public key could not be loaded."""


class KeyAllocationError(CredentialError):
    pass


class KeyEncodingError(CredentialError):
    """The key source cannot be represented in the form the SSH library expects."""


class KeyParseError(CredentialError):
    """The key bytes do not decode to a valid key of the stated or detected type."""


class SessionError(KeyprobeError):
    pass


class SessionAllocationError(SessionError):
    pass


class SessionStateError(SessionError):
    """An operation was attempted in a phase where it is not legal."""


class ConfigError(SessionError):
    """The SSH library rejected an option value."""

    def __init__(self, option: str, value: object, message: str) -> None:
        super().__init__(f"invalid {option} {value!r}: {message}")
        self.option = option
        self.value = value
        self.message = message


class ConnectError(SessionError):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"connect failed ({code}): {message}")
        self.code = code
        self.message = message


class BannerUnavailable(SessionError):
    pass


class ImpossibleOutcomeError(KeyprobeError):
    """The SSH library returned an outcome that cannot occur in this flow."""

    def __init__(self, code: object, detail: Optional[str] = None) -> None:
        message = f"impossible public key probe outcome: {code!r}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.code = code
