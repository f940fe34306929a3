"""Tests for settings and transport resolution."""

import os

from mrbubble.config import DEV_QR_SECRET, Settings
from mrbubble.server import get_transport_config

ENV_VARS = ("PORT", "TRANSPORT_TYPE", "UDS_BASE_PATH", "SERVICE_NAME", "QR_SECRET", "SESSION_SECRET", "MRBUBBLE_SEED", "MAX_WORKERS")


def clear_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self, monkeypatch):
        clear_env(monkeypatch)
        settings = Settings.from_env()
        assert settings.port == "50061"
        assert settings.transport == "tcp"
        assert settings.seed
        assert settings.uses_dev_secret()

    def test_secret_fallback_chain(self, monkeypatch):
        clear_env(monkeypatch)
        monkeypatch.setenv("SESSION_SECRET", "session")
        assert Settings.from_env().qr_secret == "session"
        monkeypatch.setenv("QR_SECRET", "qr")
        assert Settings.from_env().qr_secret == "qr"
        assert Settings.from_env().qr_secret != DEV_QR_SECRET

    def test_seed_can_be_disabled(self, monkeypatch):
        clear_env(monkeypatch)
        monkeypatch.setenv("MRBUBBLE_SEED", "false")
        assert not Settings.from_env().seed

    def test_overrides(self, monkeypatch):
        clear_env(monkeypatch)
        monkeypatch.setenv("PORT", "6000")
        monkeypatch.setenv("TRANSPORT_TYPE", "UDS")
        monkeypatch.setenv("MAX_WORKERS", "4")
        settings = Settings.from_env()
        assert (settings.port, settings.transport, settings.max_workers) == ("6000", "uds", 4)


class TestTransportConfig:
    def test_tcp(self):
        assert get_transport_config(Settings(port="6001")) == ("tcp", "[::]:6001")

    def test_uds_clears_stale_socket(self, tmp_path):
        stale = tmp_path / "marketplace.sock"
        stale.write_text("")
        transport, address = get_transport_config(Settings(transport="uds", uds_base_path=str(tmp_path)))
        assert transport == "uds"
        assert address == f"unix:{stale}"
        assert not os.path.exists(stale)
