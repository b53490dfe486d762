# tests/test_config.py
"""Tests for configuration models and the command line bootstrap."""

import logging

import pytest
from pydantic import ValidationError

import smokey
from config import (
    GatewayConfig,
    MqttConfig,
    env_default_listen_port,
    env_default_log_dir,
    split_broker_url,
)


class TestBrokerUrl:
    """Broker address forms."""

    @pytest.mark.parametrize("url,expected", [
        ("tcp://192.168.10.238:1883", ("192.168.10.238", 1883)),
        ("mqtt://broker.lan:1884", ("broker.lan", 1884)),
        ("broker.lan", ("broker.lan", 1883)),
        ("broker.lan:2000", ("broker.lan", 2000)),
    ])
    def test_split(self, url, expected):
        assert split_broker_url(url) == expected

    def test_bad_port(self):
        with pytest.raises(ValueError):
            split_broker_url("broker.lan:http")

    def test_model_rejects_missing_host(self):
        with pytest.raises(ValidationError):
            MqttConfig(broker_url="tcp://")

    def test_model_properties(self):
        cfg = MqttConfig(broker_url="mqtt://10.0.0.2:1999")
        assert cfg.broker_host == "10.0.0.2"
        assert cfg.broker_port == 1999


class TestGatewayConfig:
    """Top level settings."""

    def test_defaults(self):
        cfg = GatewayConfig()
        assert cfg.mqtt.client_id == "smokey_mqtt_agent"
        assert cfg.mqtt.topic_prefix == "smokey/"
        assert cfg.listen_port == 8080
        assert not cfg.advertise

    @pytest.mark.parametrize("port", [0, 65536])
    def test_listen_port_range(self, port):
        with pytest.raises(ValidationError):
            GatewayConfig(listen_port=port)

    def test_env_defaults(self, monkeypatch):
        monkeypatch.setenv("LOGDIR", "/var/log/smokey")
        monkeypatch.setenv("LISTENPORT", "9090")
        assert env_default_log_dir() == "/var/log/smokey"
        assert env_default_listen_port() == 9090

    def test_env_fallbacks(self, monkeypatch):
        monkeypatch.delenv("LOGDIR", raising=False)
        monkeypatch.setenv("LISTENPORT", "not-a-port")
        assert env_default_log_dir() == "/tmp/smokey_log"
        assert env_default_listen_port() == 8080


class TestCommandLine:
    """Flag parsing and logging bootstrap."""

    def test_flags(self):
        args = smokey.parse_args([
            "--broker", "broker.lan:1884", "--user", "u", "--pass", "p",
            "--topic", "den/smokey/", "--listenport", "9000", "--advertise",
        ])
        cfg = smokey.build_config(args)
        assert cfg.mqtt.broker_port == 1884
        assert cfg.mqtt.user == "u"
        assert cfg.mqtt.password == "p"
        assert cfg.mqtt.topic_prefix == "den/smokey/"
        assert cfg.listen_port == 9000
        assert cfg.advertise
        assert not cfg.tui

    def test_invalid_config_exits_1(self, capsys):
        assert smokey.main(["--listenport", "0"]) == 1
        assert "Invalid configuration" in capsys.readouterr().err

    def test_setup_logging_creates_rotating_file(self, tmp_path):
        root = logging.getLogger()
        before, level = list(root.handlers), root.level
        log_dir = tmp_path / "logs"
        try:
            smokey.setup_logging(str(log_dir), debug=False)
            logging.getLogger("test").info("hello")
            assert (log_dir / "smokey.log").exists()
        finally:
            for handler in root.handlers[:]:
                if handler not in before:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(level)

    def test_setup_logging_bad_dir_exits(self, tmp_path, capsys):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(SystemExit) as exc:
            smokey.setup_logging(str(blocker / "logs"))
        assert exc.value.code == 1
        assert "Unable to create log dir" in capsys.readouterr().err
