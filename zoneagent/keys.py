"""SSH key material shared by every zone.

One keypair authorizes the provisioning account in all zones. It is
generated once, the first time any zone is created, and reused afterwards.
Concurrent creations serialize on a threading.Lock held only while
checking for and writing the key files; generation is blocking work and
runs in a worker thread via asyncio.to_thread().
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path

import asyncssh

from zoneagent.errors import ConfigurationError, ResourceNotFoundError

logger = logging.getLogger(__name__)

KEY_ALGORITHM = "ssh-rsa"
KEY_SIZE = 2048
KEY_FILE_MODE = 0o600

# Default lock for every KeyProvider in the process
_keygen_lock = threading.Lock()


@dataclass(frozen=True)
class KeyPair:
    """Private/public key files on disk."""
    private_path: Path
    public_path: Path

    def public_key(self) -> str:
        """Public key in OpenSSH authorized_keys format."""
        try:
            return self.public_path.read_text().strip()
        except FileNotFoundError as e:
            raise ResourceNotFoundError(
                f"Public key not found: {self.public_path}", str(self.public_path)
            ) from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read public key {self.public_path}: {e}") from e


class KeyProvider:
    """Ensure the shared keypair exists, generating it at most once."""

    def __init__(
        self,
        private_path: Path | str,
        public_path: Path | str,
        comment: str = "test_kitchen",
        lock: threading.Lock | None = None,
    ):
        self.keypair = KeyPair(Path(private_path), Path(public_path))
        self.comment = comment
        self._lock = lock or _keygen_lock

    def ensure_keypair(self) -> KeyPair:
        """Return the keypair, generating it if either file is missing.

        An existing complete pair is never overwritten. A lone private or
        public key (from an interrupted write) is replaced.

        Raises:
            ConfigurationError: if the key files cannot be written
        """
        with self._lock:
            private_path = self.keypair.private_path
            public_path = self.keypair.public_path
            if private_path.exists() and public_path.exists():
                return self.keypair

            logger.info(f"Generating SSH keypair {private_path}")
            try:
                self._generate()
            except OSError as e:
                raise ConfigurationError(f"Failed to write SSH keypair {private_path}: {e}") from e
            return self.keypair

    def _generate(self) -> None:
        key = asyncssh.generate_private_key(KEY_ALGORITHM, comment=self.comment, key_size=KEY_SIZE)
        private_data = key.export_private_key("pkcs1-pem")
        public_data = key.export_public_key("openssh")

        private_path = self.keypair.private_path
        public_path = self.keypair.public_path
        private_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        public_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        # Both halves go to temp files first so a failed write never
        # leaves a half-written key at its final path.
        private_tmp = _write_temp(private_path, private_data)
        try:
            public_tmp = _write_temp(public_path, public_data)
        except OSError:
            private_tmp.unlink(missing_ok=True)
            raise
        try:
            # Private first: a crash between renames leaves the public key
            # missing, which the next call detects and regenerates.
            os.replace(private_tmp, private_path)
            os.replace(public_tmp, public_path)
        finally:
            private_tmp.unlink(missing_ok=True)
            public_tmp.unlink(missing_ok=True)


def _write_temp(path: Path, data: bytes) -> Path:
    """Write data to an owner-only temp file beside path."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), KEY_FILE_MODE)
            f.write(data)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    return tmp_path


def ensure_keypair(private_path: Path | str, public_path: Path | str) -> KeyPair:
    """Ensure the keypair at the given paths exists, using the process lock."""
    return KeyProvider(private_path, public_path).ensure_keypair()
