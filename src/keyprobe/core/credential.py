"""
The public key under test.

A Credential is parsed once at startup and then shared read-only by every
worker. It exposes no mutators, and the scan code only ever reads the key
blob out of it, so no locking is needed.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from paramiko.pkey import PKey, PublicBlob

from keyprobe.core.errors import KeyAllocationError, KeyEncodingError, KeyParseError
from keyprobe.core.types import KeyType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InlineKey:
    text: str
    key_type: KeyType


@dataclass(frozen=True)
class KeyFile:
    path: Path


KeySource = Union[InlineKey, KeyFile]


@dataclass(frozen=True)
class Credential:
    key_type: KeyType
    key: PKey = field(repr=False, compare=False)

    @property
    def fingerprint(self) -> str:
        return self.key.fingerprint

    @property
    def base64(self) -> str:
        return self.key.get_base64()

    @classmethod
    def construct(cls, source: KeySource) -> "Credential":
        if isinstance(source, InlineKey):
            return cls.from_base64(source.text, source.key_type)
        if isinstance(source, KeyFile):
            return cls.from_file(source.path)
        raise TypeError(f"unsupported key source: {source!r}")

    @classmethod
    def from_base64(cls, text: str, key_type: KeyType) -> "Credential":
        """
        Build a credential from the base64 part of an OpenSSH public key line.

        Raises:
            KeyEncodingError: text is not plain ASCII.
            KeyParseError: text is not base64, or the decoded blob is not a
                valid key of ``key_type``.
        """
        try:
            encoded = text.strip().encode("ascii")
        except UnicodeEncodeError as exc:
            raise KeyEncodingError("key text must be ASCII base64") from exc
        if b"\x00" in encoded:
            raise KeyEncodingError("key text contains a NUL byte")
        try:
            blob = base64.b64decode(encoded, validate=True)
        except binascii.Error as exc:
            raise KeyParseError(f"key text is not valid base64: {exc}") from exc
        return cls._from_blob(key_type, blob)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Credential":
        """Load an OpenSSH ``.pub`` file; the key type is taken from the file itself."""
        path = Path(path)
        if "\x00" in str(path):
            raise KeyEncodingError("key file path contains a NUL byte")
        try:
            blob = PublicBlob.from_file(str(path))
        except OSError as exc:
            raise KeyParseError(f"cannot read key file {path}: {exc}") from exc
        except ValueError as exc:
            raise KeyParseError(f"{path} is not an OpenSSH public key: {exc}") from exc
        try:
            key_type = KeyType.from_name(blob.key_type)
        except ValueError as exc:
            raise KeyParseError(str(exc)) from exc
        return cls._from_blob(key_type, blob.key_blob)

    @classmethod
    def _from_blob(cls, key_type: KeyType, blob: bytes) -> "Credential":
        if not blob:
            raise KeyParseError("key data is empty")
        try:
            key = PKey.from_type_string(key_type.value, blob)
        except MemoryError as exc:
            raise KeyAllocationError("could not allocate key object") from exc
        except Exception as exc:  # paramiko and cryptography raise many types on malformed blobs
            raise KeyParseError(f"not a valid {key_type.short_name} public key: {exc}") from exc
        credential = cls(key_type=key_type, key=key)
        logger.debug("Loaded %s key %s", key_type.short_name, credential.fingerprint)
        return credential
