"""Tests for credential stores and client configuration."""

import os
import stat

import pytest

from fishcrew_client.config import ClientConfig
from fishcrew_client.storage import FileCredentialStore, MemoryCredentialStore

USER = {"id": 7, "name": "Amina", "user_type": "fisherman"}


class TestMemoryStore:
    def test_round_trip_and_clear(self):
        store = MemoryCredentialStore()
        store.save("tok", USER)
        assert store.load() == ("tok", USER)
        store.clear()
        assert store.load() == (None, None)
        assert store.clear_count == 1

    def test_save_token_keeps_user(self):
        store = MemoryCredentialStore("old", USER)
        store.save_token("new")
        assert store.load() == ("new", USER)


class TestFileStore:
    def test_persists_under_fixed_keys(self, tmp_path):
        path = tmp_path / "creds" / "session.json"
        FileCredentialStore(path).save("tok", USER)
        assert FileCredentialStore(path).load() == ("tok", USER)

    def test_owner_only_permissions(self, tmp_path):
        path = tmp_path / "session.json"
        FileCredentialStore(path).save("tok", USER)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "session.json"
        store = FileCredentialStore(path)
        store.save("tok", USER)
        store.clear()
        store.clear()
        assert not path.exists()
        assert store.load() == (None, None)

    def test_corrupt_file_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json")
        assert FileCredentialStore(path).load() == (None, None)

    def test_save_token_keeps_user(self, tmp_path):
        store = FileCredentialStore(tmp_path / "session.json")
        store.save("old", USER)
        store.save_token("new")
        assert store.load() == ("new", USER)


class TestClientConfig:
    def test_defaults(self):
        config = ClientConfig()
        assert config.api_url == "http://localhost:3001"
        assert config.request_timeout == 10.0
        assert config.handshake_timeout == 20.0
        assert config.reconnect.max_attempts == 15
        assert config.supervisor.max_attempts == 3
        assert config.transports == ("websocket", "polling")

    def test_from_env(self, tmp_path):
        config = ClientConfig.from_env(
            {
                "FISHCREW_API_URL": "https://api.fishcrew.example/",
                "FISHCREW_REQUEST_TIMEOUT": "4.5",
                "FISHCREW_CREDENTIALS_PATH": str(tmp_path / "s.json"),
            }
        )
        assert config.api_url == "https://api.fishcrew.example"
        assert config.request_timeout == 4.5
        assert config.credentials_path == tmp_path / "s.json"

    def test_from_env_empty(self):
        assert ClientConfig.from_env({}) == ClientConfig()

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            ClientConfig.from_env({"FISHCREW_REQUEST_TIMEOUT": "-1"})

    def test_transports_from_env(self):
        config = ClientConfig.from_env({"FISHCREW_TRANSPORTS": "polling, websocket"})
        assert config.transports == ("polling", "websocket")

    def test_unknown_transport_in_env(self):
        with pytest.raises(ValueError):
            ClientConfig.from_env({"FISHCREW_TRANSPORTS": "websocket,smoke-signal"})
