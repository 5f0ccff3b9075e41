"""Test secret stores: scoping, Fernet file backend and backend selection."""
from __future__ import annotations

import pytest

from insightflow.errors import SecretStoreError
from insightflow.secrets import (
    FileSecretStore,
    InMemorySecretStore,
    SecretKey,
    create_secret_store,
    load_secrets_from_secret_manager,
)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySecretStore()
    return FileSecretStore(tmp_path / "secrets.enc", master_key="correct horse")


class TestStores:

    def test_save_load_delete(self, store):
        store.save("tok", SecretKey.TOKEN)
        assert store.load(SecretKey.TOKEN) == "tok"
        store.delete(SecretKey.TOKEN)
        assert store.load(SecretKey.TOKEN) is None

    def test_scopes_do_not_collide(self, store):
        store.scoped("a").save("token-a", SecretKey.TOKEN)
        store.scoped("b").save("token-b", SecretKey.TOKEN)
        assert store.scoped("a").load(SecretKey.TOKEN) == "token-a"
        assert store.scoped("b").load(SecretKey.TOKEN) == "token-b"
        assert store.load(SecretKey.TOKEN) is None

    def test_scoped_delete_all_keeps_other_accounts(self, store):
        store.scoped("a").save("token-a", SecretKey.TOKEN)
        store.scoped("a").save("https://a.io", SecretKey.SERVER_URL)
        store.scoped("b").save("token-b", SecretKey.TOKEN)
        store.scoped("a").delete_all()
        assert store.scoped("a").load(SecretKey.SERVER_URL) is None
        assert store.scoped("b").load(SecretKey.TOKEN) == "token-b"

    def test_unscoped_delete_all_clears_everything(self, store):
        store.save("legacy", SecretKey.TOKEN)
        store.scoped("a").save("token-a", SecretKey.TOKEN)
        store.delete_all()
        assert store.scoped("a").load(SecretKey.TOKEN) is None
        assert store.load(SecretKey.TOKEN) is None


class TestFileSecretStore:

    def test_file_is_encrypted(self, tmp_path):
        store = FileSecretStore(tmp_path / "secrets.enc", master_key="k")
        store.save("super-secret-token", SecretKey.TOKEN)
        assert b"super-secret-token" not in (tmp_path / "secrets.enc").read_bytes()

    def test_same_key_reads_back(self, tmp_path):
        FileSecretStore(tmp_path / "secrets.enc", master_key="k").save("v", SecretKey.API_KEY)
        assert FileSecretStore(tmp_path / "secrets.enc", master_key="k").load(SecretKey.API_KEY) == "v"

    def test_wrong_master_key(self, tmp_path):
        FileSecretStore(tmp_path / "secrets.enc", master_key="right").save("v", SecretKey.TOKEN)
        with pytest.raises(SecretStoreError):
            FileSecretStore(tmp_path / "secrets.enc", master_key="wrong").load(SecretKey.TOKEN)

    def test_generated_master_key_is_persisted(self, tmp_path):
        FileSecretStore(tmp_path / "secrets.enc").save("v", SecretKey.TOKEN)
        assert (tmp_path / ".master_key").exists()
        assert FileSecretStore(tmp_path / "secrets.enc").load(SecretKey.TOKEN) == "v"


class TestBackendSelection:

    def test_memory(self, tmp_path):
        assert isinstance(create_secret_store("memory", tmp_path / "s"), InMemorySecretStore)

    def test_file(self, tmp_path):
        assert isinstance(create_secret_store("file", tmp_path / "s", master_key="k"), FileSecretStore)

    def test_secret_manager_needs_a_project(self, tmp_path, monkeypatch):
        monkeypatch.setattr("insightflow.secrets.get_project_id", lambda: None)
        with pytest.raises(SecretStoreError):
            create_secret_store("secret_manager", tmp_path / "s")


class TestEnvBootstrap:

    def test_disabled_by_default(self, monkeypatch):
        monkeypatch.delenv("SECRET_MANAGER", raising=False)
        assert load_secrets_from_secret_manager() is False

    def test_skipped_outside_standalone(self, monkeypatch):
        monkeypatch.setenv("SECRET_MANAGER", "true")
        monkeypatch.setenv("DEPLOYMENT_MODE", "embedded")
        assert load_secrets_from_secret_manager() is False
