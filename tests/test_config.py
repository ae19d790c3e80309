"""Tests for gateway configuration."""

from __future__ import annotations

import json

from mechabus.config import DEFAULT_JWT_SECRET, GatewayConfig


class TestGatewayConfig:
    def test_defaults(self):
        cfg = GatewayConfig()
        assert cfg.port == 3998
        assert cfg.token_ttl == 1800
        assert cfg.address_file == "/etc/dnsmasq.conf"
        assert cfg.simulate is False
        assert cfg.uplink_url == ""

    def test_default_secret_is_long_enough_for_hs256(self):
        assert GatewayConfig().jwt_secret == DEFAULT_JWT_SECRET
        assert len(DEFAULT_JWT_SECRET.encode()) >= 32

    def test_load_save(self, tmp_path):
        cfg = GatewayConfig(
            port=4000,
            local_actuators={"pump": 17},
            safety_limits={"pump": 600},
            password_hashes=["$2b$04$abc"],
        )
        path = tmp_path / "config.json"
        cfg.save(path)

        loaded = GatewayConfig.load(path)
        assert loaded.port == 4000
        assert loaded.local_actuators == {"pump": 17}
        assert loaded.safety_limits == {"pump": 600}
        assert loaded.password_hashes == ["$2b$04$abc"]

    def test_load_missing_file(self, tmp_path):
        cfg = GatewayConfig.load(tmp_path / "nonexistent.json")
        assert cfg.port == 3998

    def test_load_ignores_unknown_keys(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"port": 5000, "unknown_key": "ignored"}))
        cfg = GatewayConfig.load(path)
        assert cfg.port == 5000
        assert not hasattr(cfg, "unknown_key")

    def test_apply_env(self):
        cfg = GatewayConfig().apply_env({
            "MECHABUS_PORT": "8080",
            "MECHABUS_SIMULATE": "true",
            "MECHABUS_PASSWORD_HASHES": "$2b$04$a, $2b$04$b",
            "MECHABUS_SAFETY_LIMITS": '{"pump": 300}',
            "MECHABUS_UPLINK_URL": "wss://peer.example/ws",
            "UNRELATED": "x",
        })
        assert cfg.port == 8080
        assert cfg.simulate is True
        assert cfg.password_hashes == ["$2b$04$a", "$2b$04$b"]
        assert cfg.safety_limits == {"pump": 300}
        assert cfg.uplink_url == "wss://peer.example/ws"

    def test_apply_env_false(self):
        cfg = GatewayConfig(simulate=True).apply_env({"MECHABUS_SIMULATE": "0"})
        assert cfg.simulate is False
