"""
Example usage of keyprobe as a library.

Install the package first:
    pip install -e .
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the repository's src directory is on the path for direct execution.
ROOT_DIR = Path(__file__).resolve().parent
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from keyprobe import Credential, ScanDispatcher, ScanOutcome


def main() -> None:
    credential = Credential.from_file(Path.home() / ".ssh" / "id_ed25519.pub")
    hosts = ["192.0.2.10", "192.0.2.11", "bastion.example.net"]

    dispatcher = ScanDispatcher(credential, username="audit", workers=2, timeout=10)
    summary = dispatcher.run(hosts)
    print(
        f"{summary.count(ScanOutcome.ACCEPTED)} accepted, "
        f"{summary.count(ScanOutcome.REJECTED)} rejected, "
        f"{summary.count(ScanOutcome.CONNECTION_FAILED)} unreachable"
    )


if __name__ == "__main__":
    main()
