"""Unit tests for the shared SSH keypair.

Tests verify:
1. A missing pair is generated with owner-only permissions
2. An existing pair is never overwritten
3. A torn pair (only one half on disk) is regenerated
4. Concurrent callers produce exactly one pair
5. Write failures surface as ConfigurationError and leave nothing behind
"""

import base64
import stat
import threading
from unittest.mock import patch

import asyncssh
import pytest

from zoneagent import keys as keys_module
from zoneagent.errors import ConfigurationError, ResourceNotFoundError
from zoneagent.keys import KeyPair, KeyProvider, ensure_keypair


@pytest.fixture
def key_paths(tmp_path):
    return tmp_path / "keys" / "id_rsa", tmp_path / "keys" / "id_rsa.pub"


class TestEnsureKeypair:
    """Tests for KeyProvider.ensure_keypair()."""

    def test_generates_missing_pair(self, key_paths):
        private_path, public_path = key_paths
        keypair = KeyProvider(private_path, public_path).ensure_keypair()

        assert keypair == KeyPair(private_path, public_path)
        assert "PRIVATE KEY" in private_path.read_text()
        algorithm, blob, comment = public_path.read_text().split()
        assert algorithm == "ssh-rsa"
        assert comment == "test_kitchen"
        base64.b64decode(blob, validate=True)

    def test_files_are_owner_only(self, key_paths):
        private_path, public_path = key_paths
        KeyProvider(private_path, public_path).ensure_keypair()
        assert stat.S_IMODE(private_path.stat().st_mode) == 0o600
        assert stat.S_IMODE(public_path.stat().st_mode) == 0o600

    def test_custom_comment(self, key_paths):
        private_path, public_path = key_paths
        KeyProvider(private_path, public_path, comment="zones").ensure_keypair()
        assert public_path.read_text().split()[-1] == "zones"

    def test_existing_pair_untouched(self, key_paths):
        private_path, public_path = key_paths
        private_path.parent.mkdir()
        private_path.write_text("existing private")
        public_path.write_text("existing public")

        with patch("zoneagent.keys.asyncssh.generate_private_key") as mock_generate:
            KeyProvider(private_path, public_path).ensure_keypair()

        mock_generate.assert_not_called()
        assert private_path.read_text() == "existing private"
        assert public_path.read_text() == "existing public"

    def test_torn_pair_regenerated(self, key_paths):
        """A private key without its public half is replaced by a new pair."""
        private_path, public_path = key_paths
        private_path.parent.mkdir()
        private_path.write_text("orphaned private")

        KeyProvider(private_path, public_path).ensure_keypair()

        assert private_path.read_text() != "orphaned private"
        assert public_path.read_text().startswith("ssh-rsa ")

    def test_repeat_calls_reuse_pair(self, key_paths):
        private_path, public_path = key_paths
        KeyProvider(private_path, public_path).ensure_keypair()
        first = (private_path.read_bytes(), public_path.read_bytes())
        ensure_keypair(private_path, public_path)
        assert (private_path.read_bytes(), public_path.read_bytes()) == first

    def test_concurrent_calls_produce_one_pair(self, key_paths):
        """Racing callers serialize on the lock and see the same files."""
        private_path, public_path = key_paths
        barrier = threading.Barrier(4)
        results = []
        errors = []

        def _worker():
            barrier.wait()
            try:
                keypair = KeyProvider(private_path, public_path).ensure_keypair()
                results.append((keypair, private_path.read_bytes(), public_path.read_bytes()))
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        with patch("zoneagent.keys.asyncssh.generate_private_key", wraps=asyncssh.generate_private_key) as mock_generate:
            threads = [threading.Thread(target=_worker) for _ in range(4)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert errors == []
        assert mock_generate.call_count == 1
        assert len({r[0] for r in results}) == 1
        assert len({(r[1], r[2]) for r in results}) == 1
        leftovers = [p.name for p in private_path.parent.iterdir() if p.name.startswith(".")]
        assert leftovers == []

    def test_injected_lock_is_used(self, key_paths):
        private_path, public_path = key_paths
        lock = threading.Lock()
        provider = KeyProvider(private_path, public_path, lock=lock)
        lock.acquire()
        try:
            acquired = threading.Event()

            def _worker():
                provider.ensure_keypair()
                acquired.set()

            t = threading.Thread(target=_worker)
            t.start()
            assert not acquired.wait(0.2)
        finally:
            lock.release()
        t.join()
        assert acquired.is_set()

    def test_write_failure_is_configuration_error(self, key_paths):
        """A failed second write leaves no key at either final path."""
        private_path, public_path = key_paths
        real_write_temp = keys_module._write_temp
        calls = []

        def _failing_write(path, data):
            calls.append(path)
            if path == public_path:
                raise OSError("disk full")
            return real_write_temp(path, data)

        with patch("zoneagent.keys._write_temp", side_effect=_failing_write):
            with pytest.raises(ConfigurationError, match="disk full"):
                KeyProvider(private_path, public_path).ensure_keypair()

        assert calls == [private_path, public_path]
        assert not private_path.exists()
        assert not public_path.exists()
        assert list(private_path.parent.iterdir()) == []


class TestKeyPair:
    """Tests for reading the public half."""

    def test_public_key_text(self, tmp_path):
        (tmp_path / "k.pub").write_text("ssh-rsa AAAA test_kitchen\n")
        assert KeyPair(tmp_path / "k", tmp_path / "k.pub").public_key() == "ssh-rsa AAAA test_kitchen"

    def test_missing_public_key(self, tmp_path):
        with pytest.raises(ResourceNotFoundError):
            KeyPair(tmp_path / "k", tmp_path / "k.pub").public_key()
