"""Filesystem scratch area for per-session credential artifacts."""

import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

CREDENTIALS_FILENAME = "creds.json"


class CredentialStore(Protocol):
    """Interface for per-session credential directories."""

    def create_directory(self, token: str) -> Path:
        """Create and return an empty directory for a session."""

    def write_credentials(self, directory: Path, payload: dict[str, object]) -> None:
        """Persist credential material inside a session directory."""

    def read_artifact(self, directory: Path) -> bytes:
        """Return the raw credential bytes of a session directory."""

    def remove_directory(self, directory: Path) -> None:
        """Delete a session directory and everything in it."""


@dataclass
class FileCredentialStore(CredentialStore):
    """Credential store rooted at a local directory."""

    root: Path

    def create_directory(self, token: str) -> Path:
        """Create the scratch directory for a session token."""
        directory = self.root / token
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def write_credentials(self, directory: Path, payload: dict[str, object]) -> None:
        """Write creds.json atomically via a temporary sibling file."""
        target = directory / CREDENTIALS_FILENAME
        temp = directory / f".{CREDENTIALS_FILENAME}.tmp"
        temp.write_text(json.dumps(payload), encoding="utf-8")
        temp.replace(target)

    def read_artifact(self, directory: Path) -> bytes:
        """Read creds.json, raising FileNotFoundError when absent."""
        return (directory / CREDENTIALS_FILENAME).read_bytes()

    def remove_directory(self, directory: Path) -> None:
        """Remove a session directory; a missing directory is not an error."""
        if directory.exists():
            shutil.rmtree(directory)
