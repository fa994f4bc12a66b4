from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from keyprobe.config import settings
from keyprobe.core.backend import SSHBackend
from keyprobe.core.classifier import Reporter
from keyprobe.core.credential import Credential, InlineKey, KeyFile
from keyprobe.core.dispatcher import ScanDispatcher, read_hosts
from keyprobe.core.errors import CredentialError
from keyprobe.core.observability import configure_logging
from keyprobe.core.types import KeyType

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1
EXIT_CONTRACT_VIOLATION = 3
EXIT_INTERRUPTED = 130

MAX_WORKERS = 1024


def _worker_count(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if not 1 <= number <= MAX_WORKERS:
        raise argparse.ArgumentTypeError(f"must be between 1 and {MAX_WORKERS}: {value!r}")
    return number


def _port(value: str) -> str:
    text = str(value).strip()
    if not text.isdecimal() or not 0 < int(text) < 65536:
        raise argparse.ArgumentTypeError(f"not a TCP port number: {value!r}")
    return text


def _timeout(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None
    if seconds < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value!r}")
    return seconds


def _key_type(value: str) -> KeyType:
    try:
        return KeyType.from_name(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keyprobe",
        description=(
            "Report which SSH servers would accept a public key. Hosts are read "
            "from stdin, one per line; a blank line ends the list."
        ),
    )
    parser.add_argument("-u", "--user", required=True, help="Remote username to probe")
    parser.add_argument(
        "-p",
        "--port",
        type=_port,
        default=settings.port,
        help=f"Remote SSH port (default: {settings.port})",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=_worker_count,
        default=settings.workers,
        help=f"Number of hosts probed in parallel (default: {settings.workers})",
    )
    parser.add_argument(
        "--timeout",
        type=_timeout,
        default=settings.timeout_seconds,
        help=f"Per-connection timeout in seconds, 0 to wait forever (default: {settings.timeout_seconds:g})",
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=["text", "jsonl"],
        default=settings.output_format,
        help="Report format for accepted hosts (default: %(default)s)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log scan progress to stderr (-vv for debug output)",
    )
    key = parser.add_mutually_exclusive_group(required=True)
    key.add_argument("-k", "--key", metavar="BASE64", help="Public key as base64 text (requires --key-type)")
    key.add_argument("-f", "--key-file", type=Path, help="Path to an OpenSSH public key file")
    parser.add_argument(
        "-t",
        "--key-type",
        type=_key_type,
        help="Type of the --key material: " + ", ".join(kt.short_name for kt in KeyType),
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.key is not None and args.key_type is None:
        parser.error("--key requires --key-type")
    if args.key_file is not None and args.key_type is not None:
        parser.error("--key-type only applies to --key; the type is read from the key file")
    return args


def _log_level(verbosity: int) -> str:
    if verbosity >= 2:
        return "DEBUG"
    if verbosity == 1:
        return "INFO"
    return settings.log_level


def main(argv: Optional[List[str]] = None, *, backend: Optional[SSHBackend] = None) -> int:
    args = parse_args(argv)
    configure_logging(_log_level(args.verbose), json_output=settings.log_json)

    source = InlineKey(args.key, args.key_type) if args.key is not None else KeyFile(args.key_file)
    try:
        credential = Credential.construct(source)
    except CredentialError as exc:
        print(f"keyprobe: error: {exc}", file=sys.stderr)
        return EXIT_STARTUP_FAILURE

    dispatcher = ScanDispatcher(
        credential,
        username=args.user,
        port=args.port,
        workers=args.jobs,
        timeout=args.timeout or None,
        max_pending=settings.max_pending,
        backend=backend,
        reporter=Reporter(output_format=args.output_format),
    )
    summary = dispatcher.run(read_hosts(sys.stdin))

    if summary.interrupted:
        return EXIT_INTERRUPTED
    if summary.contract_violations:
        return EXIT_CONTRACT_VIOLATION
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
