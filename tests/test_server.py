"""Tests for settings and the WebSocket server glue."""

import json
import logging

import pytest

from helm.config import Settings
from helm.server import HelmServer, setup_logging
from helm.session import Session
from helm.streaming import StreamMode

from conftest import FakeBrowser, FakeLLM


class FakeWebSocket:
    """Async-iterable connection that replays inbound messages."""

    def __init__(self, inbound):
        self.inbound = list(inbound)
        self.sent = []

    async def send(self, data):
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.inbound:
            raise StopAsyncIteration
        return self.inbound.pop(0)


class FakeRequest:

    def __init__(self, path):
        self.path = path


class FakeConnection:

    def respond(self, status, body):
        return (status, body)


class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ("PORT", "LLM_MODEL", "ENABLE_CDP_STREAMING", "HEADLESS"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env(env_file="/nonexistent/.env")
        assert settings.port == 4000
        assert settings.llm_model == "llama3.1:8b"
        assert settings.streaming_config().mode == StreamMode.POLLING

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PORT", "5001")
        monkeypatch.setenv("HEADLESS", "false")
        monkeypatch.setenv("ENABLE_CDP_STREAMING", "true")
        monkeypatch.setenv("CDP_FRAME_RATE", "15")
        monkeypatch.setenv("ALLOW_INPUT_WHILE_RUNNING", "1")
        settings = Settings.from_env(env_file="/nonexistent/.env")
        assert settings.port == 5001
        assert settings.headless is False
        assert settings.allow_input_while_running is True
        config = settings.streaming_config()
        assert config.mode == StreamMode.PUSH
        assert config.target_fps == 15

    def test_invalid_numbers_fall_back(self, monkeypatch, caplog):
        monkeypatch.setenv("PORT", "not-a-port")
        monkeypatch.setenv("GOAL_TIMEOUT", "soon")
        with caplog.at_level(logging.WARNING):
            settings = Settings.from_env(env_file="/nonexistent/.env")
        assert settings.port == 4000
        assert settings.goal_timeout == 120
        assert "Invalid PORT" in caplog.text

    def test_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("LLM_MODEL", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("LLM_MODEL=qwen2.5:7b\n")
        settings = Settings.from_env(env_file=str(env_file))
        assert settings.llm_model == "qwen2.5:7b"


class TestServer:

    def make_server(self, browsers, init_error=None):
        def factory(websocket, settings):
            browser = FakeBrowser()
            if init_error is not None:
                browser.failures["initialize"] = init_error
            browsers.append(browser)
            return Session(websocket, settings, browser=browser, llm=FakeLLM())

        return HelmServer(Settings(log_dir=None, iteration_delay=0, click_settle_delay=0), session_factory=factory)

    def test_health_check(self):
        server = HelmServer(Settings())
        status, body = server.process_request(FakeConnection(), FakeRequest("/health"))
        assert int(status) == 200
        assert body.strip() == "ok"
        assert server.process_request(FakeConnection(), FakeRequest("/")) is None

    @pytest.mark.asyncio
    async def test_handler_runs_session_until_disconnect(self):
        browsers = []
        server = self.make_server(browsers)
        websocket = FakeWebSocket([
            json.dumps({"type": "configure_stream", "payload": {"targetFps": 5}}),
        ])

        await server.handler(websocket)

        assert websocket.sent[0]["type"] == "connection"
        assert browsers[0].closed
        assert server.sessions == {}

    @pytest.mark.asyncio
    async def test_start_failure_is_reported(self):
        browsers = []
        server = self.make_server(browsers, init_error=RuntimeError("Executable doesn't exist"))
        websocket = FakeWebSocket([])

        await server.handler(websocket)

        assert websocket.sent == [{
            "type": "agent_error",
            "payload": {"action": "initialize", "error": "Executable doesn't exist"},
            "timestamp": websocket.sent[0]["timestamp"],
        }]
        assert browsers[0].closed


class TestLogging:

    def test_setup_logging_creates_log_file(self, tmp_path):
        root = logging.getLogger()
        saved, saved_level = root.handlers[:], root.level
        root.handlers = []
        try:
            setup_logging(tmp_path / "logs", "debug")
            logging.getLogger("helm.test").info("hello from test")
            for handler in root.handlers:
                handler.flush()
            assert "hello from test" in (tmp_path / "logs" / "helm.log").read_text()
            assert root.level == logging.DEBUG
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers = saved
            root.setLevel(saved_level)
