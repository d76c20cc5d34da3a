"""
WebSocket server: one Session per connection.

Usage:
    helm-server --port 4000
    python -m helm.server --no-headless --cdp
"""

import argparse
import asyncio
import http
import logging
from pathlib import Path
from typing import Callable, Dict, Optional

import websockets

from .config import Settings
from .session import Session

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(log_dir: Path, level: str = "INFO") -> None:
    """Log to <log_dir>/helm.log and stderr."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_dir / "helm.log"),
            logging.StreamHandler(),
        ],
    )


class HelmServer:
    """Accepts observer connections and runs a Session for each."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_factory: Callable[..., Session] = Session,
    ):
        self.settings = settings or Settings()
        self.session_factory = session_factory
        self.sessions: Dict[str, Session] = {}

    async def handler(self, websocket, path=None):
        session = self.session_factory(websocket, self.settings)
        self.sessions[session.session_id] = session
        logger.info(f"[{session.session_id}] Client connected ({len(self.sessions)} active)")

        try:
            try:
                await session.start()
            except Exception as e:
                logger.exception(f"[{session.session_id}] Session failed to start")
                await session.send("agent_error", {"action": "initialize", "error": str(e)[:200]})
                return

            async for message in websocket:
                await session.handle_message(message)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            await session.close()
            self.sessions.pop(session.session_id, None)
            logger.info(f"[{session.session_id}] Client disconnected ({len(self.sessions)} active)")

    def process_request(self, connection, request):
        """Answer GET /health before the WebSocket handshake."""
        if request.path == "/health":
            return connection.respond(http.HTTPStatus.OK, "ok\n")
        return None

    async def serve(self) -> None:
        host, port = self.settings.host, self.settings.port
        async with websockets.serve(
            self.handler,
            host,
            port,
            process_request=self.process_request,
            max_size=None,
        ):
            logger.info(f"Helm server listening on ws://{host}:{port}")
            await asyncio.Future()  # Run forever


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the helm browser-agent WebSocket server")
    parser.add_argument("--host", help="Bind address (default: HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port (default: PORT or 4000)")
    parser.add_argument("--model", help="Ollama model (default: LLM_MODEL)")
    parser.add_argument("--headless", action=argparse.BooleanOptionalAction, default=None,
                        help="Run the browser headless")
    parser.add_argument("--cdp", action="store_true", help="Use CDP push streaming instead of polling")
    parser.add_argument("--env-file", help="Path to a .env file")
    args = parser.parse_args(argv)

    settings = Settings.from_env(args.env_file)
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.model:
        settings.llm_model = args.model
    if args.headless is not None:
        settings.headless = args.headless
    if args.cdp:
        settings.enable_cdp_streaming = True

    setup_logging(settings.log_dir, settings.log_level)
    try:
        asyncio.run(HelmServer(settings).serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
