"""Tests for credential stores.

Covers:
- In-memory store round trips and isolation
- File store persistence, permissions and robustness
"""

import json
import os
import stat

from grantflow.services.storage import (
    CREDENTIALS_ACCOUNT,
    TOKENS_ACCOUNT,
    FileCredentialStore,
    MemoryCredentialStore,
)

SERVICE = "https://auth.test/authorize"


class TestMemoryCredentialStore:
    """Test the in-memory store."""

    def setup_method(self):
        self.store = MemoryCredentialStore()

    def test_save_and_load(self):
        self.store.save(SERVICE, TOKENS_ACCOUNT, {"accessToken": "abc"})

        assert self.store.load(SERVICE, TOKENS_ACCOUNT) == {"accessToken": "abc"}

    def test_accounts_and_services_are_separate(self):
        self.store.save(SERVICE, TOKENS_ACCOUNT, {"accessToken": "abc"})

        assert self.store.load(SERVICE, CREDENTIALS_ACCOUNT) is None
        assert self.store.load("other", TOKENS_ACCOUNT) is None

    def test_loaded_data_is_a_copy(self):
        self.store.save(SERVICE, TOKENS_ACCOUNT, {"accessToken": "abc"})

        self.store.load(SERVICE, TOKENS_ACCOUNT)["accessToken"] = "changed"

        assert self.store.load(SERVICE, TOKENS_ACCOUNT) == {"accessToken": "abc"}

    def test_delete(self):
        self.store.save(SERVICE, TOKENS_ACCOUNT, {"accessToken": "abc"})

        self.store.delete(SERVICE, TOKENS_ACCOUNT)
        self.store.delete(SERVICE, TOKENS_ACCOUNT)

        assert self.store.load(SERVICE, TOKENS_ACCOUNT) is None


class TestFileCredentialStore:
    """Test the file-based store."""

    def test_save_and_load(self, tmp_path):
        # Arrange
        store = FileCredentialStore(tmp_path / "creds")

        # Act
        store.save(SERVICE, CREDENTIALS_ACCOUNT, {"id": "abc", "secret": "x"})

        # Assert
        assert store.load(SERVICE, CREDENTIALS_ACCOUNT) == {"id": "abc", "secret": "x"}
        assert FileCredentialStore(tmp_path / "creds").load(
            SERVICE, CREDENTIALS_ACCOUNT
        ) == {"id": "abc", "secret": "x"}

    def test_files_are_owner_only(self, tmp_path):
        store = FileCredentialStore(tmp_path)

        store.save(SERVICE, TOKENS_ACCOUNT, {"accessToken": "abc"})

        (path,) = tmp_path.iterdir()
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert path.name.endswith(f"-{TOKENS_ACCOUNT}.json")

    def test_missing_entry(self, tmp_path):
        assert FileCredentialStore(tmp_path).load(SERVICE, TOKENS_ACCOUNT) is None

    def test_corrupt_file_loads_as_none(self, tmp_path):
        # Arrange
        store = FileCredentialStore(tmp_path)
        store.save(SERVICE, TOKENS_ACCOUNT, {"accessToken": "abc"})
        (path,) = tmp_path.iterdir()
        path.write_text("{not json")

        # Act & Assert
        assert store.load(SERVICE, TOKENS_ACCOUNT) is None

    def test_non_object_loads_as_none(self, tmp_path):
        store = FileCredentialStore(tmp_path)
        store.save(SERVICE, TOKENS_ACCOUNT, {"accessToken": "abc"})
        (path,) = tmp_path.iterdir()
        path.write_text(json.dumps(["abc"]))

        assert store.load(SERVICE, TOKENS_ACCOUNT) is None

    def test_delete(self, tmp_path):
        store = FileCredentialStore(tmp_path)
        store.save(SERVICE, TOKENS_ACCOUNT, {"accessToken": "abc"})

        store.delete(SERVICE, TOKENS_ACCOUNT)
        store.delete(SERVICE, TOKENS_ACCOUNT)

        assert list(tmp_path.iterdir()) == []
