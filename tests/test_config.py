"""Tests for Settings configuration model."""

from pathlib import Path

from conductor.config import Settings


class TestDefaults:
    def test_default_data_dir(self):
        s = Settings()
        assert s.data_dir == Path("data")

    def test_default_api_binding(self):
        s = Settings()
        assert s.api_host == "127.0.0.1"
        assert s.api_port == 8787

    def test_default_model(self):
        s = Settings()
        assert s.default_model == "gpt-4o-mini"

    def test_default_escape_hatch(self):
        s = Settings()
        assert s.escape_hatch_tool == "respond_to_user"

    def test_default_turn_timeout(self):
        s = Settings()
        assert s.turn_timeout_seconds == 300.0

    def test_embeddings_off_by_default(self):
        s = Settings()
        assert s.embedding_api_url == ""
        assert s.embedding_dimensions is None


class TestOverrides:
    def test_init_values_win(self):
        s = Settings(api_port=9999, default_model="gpt-4.1", workspace_dir="/tmp/ws")
        assert s.api_port == 9999
        assert s.default_model == "gpt-4.1"
        assert s.workspace_dir == Path("/tmp/ws")

    def test_environment_ignored_under_tests(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_MODEL", "from-env")
        s = Settings()
        assert s.default_model == "gpt-4o-mini"
