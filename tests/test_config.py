"""Tests for client configuration loading."""

from __future__ import annotations

import json

from peerdoctor.config import MANIFEST_URL, USER_AGENT, DoctorConfig
from peerdoctor.protocol import CHUNK_SIZES


class TestDoctorConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PEER_DOCTOR_URL", raising=False)
        monkeypatch.delenv("PEER_DOCTOR_PROBE_TIMEOUT", raising=False)
        config = DoctorConfig.load()
        assert config.manifest_url == MANIFEST_URL
        assert config.user_agent == USER_AGENT
        assert config.chunk_sizes == list(CHUNK_SIZES)

    def test_load_filters_unknown_keys(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PEER_DOCTOR_URL", raising=False)
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "manifest_url": "http://localhost:8080",
            "probe_timeout": 5,
            "bogus": True,
        }))
        config = DoctorConfig.load(path)
        assert config.manifest_url == "http://localhost:8080"
        assert config.probe_timeout == 5
        assert not hasattr(config, "bogus")

    def test_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PEER_DOCTOR_URL", raising=False)
        config = DoctorConfig.load(tmp_path / "nope.json")
        assert config.manifest_url == MANIFEST_URL

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PEER_DOCTOR_URL", "http://override")
        monkeypatch.setenv("PEER_DOCTOR_PROBE_TIMEOUT", "0")
        config = DoctorConfig.load()
        assert config.manifest_url == "http://override"
        assert config.probe_timeout is None

    def test_save_round_trip(self, tmp_path, monkeypatch):
        monkeypatch.delenv("PEER_DOCTOR_URL", raising=False)
        monkeypatch.delenv("PEER_DOCTOR_PROBE_TIMEOUT", raising=False)
        config = DoctorConfig(peers={"ab" * 32: "ws://10.0.0.2:7000"}, nat_type=1)
        path = tmp_path / "sub" / "config.json"
        config.save(path)
        assert DoctorConfig.load(path) == config
