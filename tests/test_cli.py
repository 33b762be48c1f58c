"""Tests for command line parsing."""

from liveserver.__main__ import build_parser, main, settings_from_args


class TestCli:

    def test_serve_flags_override_settings(self, tmp_path):
        args = build_parser().parse_args(["serve", "--port", "9001", "--root", str(tmp_path), "--no-inject"])
        settings = settings_from_args(args)
        assert settings.port == 9001
        assert settings.root == str(tmp_path)
        assert settings.inject is False
        assert settings.watch is True

    def test_env_settings(self, monkeypatch):
        monkeypatch.setenv("LIVESERVER_HEARTBEAT_TIMEOUT", "30")
        args = build_parser().parse_args(["serve", "--port", "9002"])
        settings = settings_from_args(args)
        assert settings.heartbeat_timeout == 30.0

    def test_echo_args(self):
        args = build_parser().parse_args(["echo", "3", "hello there"])
        assert args.target == 3
        assert args.message == "hello there"

    def test_serve_is_default(self, monkeypatch):
        served = []
        monkeypatch.setattr("liveserver.__main__.run", served.append)
        monkeypatch.setattr("liveserver.__main__.setup_logging", lambda level: None)
        assert main(["--port", "9003", "--no-watch"]) == 0
        [settings] = served
        assert settings.port == 9003
        assert settings.watch is False

    def test_control_command_unreachable(self, monkeypatch, capsys):
        monkeypatch.setattr("liveserver.__main__.setup_logging", lambda level: None)
        assert main(["reload", "--url", "ws://127.0.0.1:9/__ws"]) == 1
        assert "[!]" in capsys.readouterr().err
