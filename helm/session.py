"""
One observer connection: browser, agent loop, frame streamer and channel.

Inbound messages are JSON envelopes {type, payload, timestamp}:
    instruction                  {id, text}
    manual_intervention_complete {}
    mouse_action                 {actionType, x, y, button, clickCount, deltaX, deltaY}
    keyboard_action              {actionType, key, text, modifiers}
    configure_stream             {targetFps?, quality?, maxWidth?, maxHeight?}

Outbound events use the same envelope: connection, frame, agent_response,
agent_complete, agent_error, manual_intervention,
manual_intervention_acknowledged.
"""

import asyncio
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set

import websockets

from .agent import AgentLoop
from .browser import MODIFIER_KEYS, Browser
from .config import Settings
from .llm import OllamaClient
from .plan import PlanStore
from .streaming import Frame, create_streamer

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def envelope(type: str, payload: Dict[str, Any]) -> str:
    return json.dumps({
        "type": type,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


class Session:
    """
    Routes messages between one observer and its agent.

    Nothing is shared between sessions. Agent runs are background tasks so
    the channel keeps reading (intervention acks, input, stream config)
    while the loop works.
    """

    def __init__(
        self,
        channel,
        settings: Optional[Settings] = None,
        browser=None,
        llm=None,
        session_id: Optional[str] = None,
    ):
        self.channel = channel
        self.settings = settings or Settings()
        self.session_id = session_id or new_session_id()
        self.closed = False

        s = self.settings
        self.browser = browser or Browser(
            headless=s.headless,
            viewport_width=s.viewport_width,
            viewport_height=s.viewport_height,
            start_url=s.start_url,
            char_budget=s.dom_char_budget,
        )
        self.llm = llm or OllamaClient(
            model=s.llm_model,
            host=s.ollama_host,
            temperature=s.llm_temperature,
            num_ctx=s.llm_num_ctx,
        )
        self.agent = AgentLoop(
            self.browser,
            self.llm,
            self.send,
            plan=PlanStore(
                max_depth=s.max_plan_depth,
                goal_timeout=s.goal_timeout,
                subgoal_timeout=s.subgoal_timeout,
            ),
            settle_delay=s.click_settle_delay,
            iteration_delay=s.iteration_delay,
            run_log_dir=s.log_dir,
            session_id=self.session_id,
        )
        self.streamer = create_streamer(self.browser, self._send_frame, s.streaming_config())

        self._tasks: Set[asyncio.Task] = set()
        self._instruction_ids: Set[str] = set()

    def _log(self, level: int, message: str) -> None:
        logger.log(level, f"[{self.session_id}] {message}")

    # --- outbound ----------------------------------------------------------

    async def send(self, type: str, payload: Dict[str, Any]) -> None:
        """Send one event to the observer. A closed channel drops it."""
        if self.closed:
            return
        try:
            await self.channel.send(envelope(type, payload))
        except websockets.exceptions.ConnectionClosed:
            self._log(logging.DEBUG, f"Channel closed, dropped {type} event")

    async def _send_frame(self, frame: Frame) -> None:
        await self.send("frame", frame.to_payload())

    # --- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Bring up the browser, greet the observer and start streaming."""
        self._log(logging.INFO, "Starting session")
        if not self.browser.is_initialized:
            await self.browser.initialize()
        await self.send("connection", {"status": "connected", "sessionId": self.session_id})
        await self.streamer.start()
        self._log(logging.INFO, f"Streaming: {self.streamer.info()}")

    async def close(self) -> None:
        """Stop streaming, cancel agent work, then release the browser."""
        if self.closed:
            return
        self.closed = True
        self._log(logging.INFO, "Closing session")

        await self.streamer.stop()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        await self.browser.close()
        self._log(logging.INFO, "Session closed")

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"{self.session_id}:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._log(logging.ERROR, f"Task {task.get_name()} failed: {error!r}")

    async def wait_idle(self) -> None:
        """Wait for every agent task started so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- inbound -----------------------------------------------------------

    async def handle_message(self, raw) -> None:
        """Parse and route one inbound message. Never raises."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError) as e:
            self._log(logging.WARNING, f"Ignoring unparseable message: {e}")
            return
        if not isinstance(message, dict):
            self._log(logging.WARNING, "Ignoring message that is not an object")
            return

        msg_type = message.get("type", "")
        payload = message.get("payload") or {}
        handler = self.HANDLERS.get(msg_type)
        if handler is None:
            self._log(logging.WARNING, f"Unknown message type: {msg_type!r}")
            return

        try:
            await handler(self, payload)
        except Exception as e:
            self._log(logging.ERROR, f"{msg_type} failed: {e}")
            await self.send("agent_error", {"action": msg_type, "error": str(e)[:200]})

    async def _on_instruction(self, payload: Dict[str, Any]) -> None:
        text = str(payload.get("text") or "").strip()
        if not text:
            self._log(logging.WARNING, "Ignoring empty instruction")
            return

        instruction_id = payload.get("id")
        if instruction_id is not None:
            if instruction_id in self._instruction_ids:
                self._log(logging.INFO, f"Ignoring duplicate instruction {instruction_id}")
                return
            self._instruction_ids.add(instruction_id)

        self._log(logging.INFO, f"Instruction: {text}")
        self._spawn(self.agent.on_instruction(text), "instruction")

    async def _on_intervention_complete(self, payload: Dict[str, Any]) -> None:
        self._log(logging.INFO, "Manual intervention complete")
        await self.send("manual_intervention_acknowledged", {
            "sessionId": self.session_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status": "acknowledged",
        })
        self._spawn(self.agent.resume(), "resume")

    def _input_allowed(self, kind: str) -> bool:
        if self.settings.allow_input_while_running:
            return True
        if not self.agent.is_running or self.agent.signals.is_paused_for_manual_intervention:
            return True
        self._log(logging.WARNING, f"Rejected {kind} while the agent is running")
        return False

    async def _on_mouse(self, payload: Dict[str, Any]) -> None:
        if not self._input_allowed("mouse_action"):
            await self.send("agent_error", {
                "action": "mouse_action",
                "error": "Input is only accepted while the agent is idle or paused",
            })
            return

        action = payload.get("actionType")
        x = float(payload.get("x", 0))
        y = float(payload.get("y", 0))
        button = payload.get("button") or "left"

        if action == "move":
            await self.browser.mouse_move(x, y)
        elif action == "click":
            await self.browser.mouse_click(x, y, button=button, click_count=int(payload.get("clickCount") or 1))
        elif action == "down":
            await self.browser.mouse_down(x, y, button=button)
        elif action == "up":
            await self.browser.mouse_up(x, y, button=button)
        elif action == "scroll":
            await self.browser.scroll(
                x, y,
                delta_x=float(payload.get("deltaX") or 0),
                delta_y=float(payload.get("deltaY") or 0),
            )
        else:
            self._log(logging.WARNING, f"Unknown mouse action: {action!r}")
            return

        if action != "move":
            self._log(logging.DEBUG, f"Mouse {action} at ({x}, {y})")

    async def _on_keyboard(self, payload: Dict[str, Any]) -> None:
        if not self._input_allowed("keyboard_action"):
            await self.send("agent_error", {
                "action": "keyboard_action",
                "error": "Input is only accepted while the agent is idle or paused",
            })
            return

        action = payload.get("actionType")
        key = payload.get("key")
        modifiers = [m.lower() for m in payload.get("modifiers") or []]

        if action == "key_down":
            if not key:
                raise ValueError("Key required for key_down action")
            # The modifier is already held as part of `modifiers`
            if key.lower() in MODIFIER_KEYS and key.lower() in modifiers:
                self._log(logging.DEBUG, f"Skipping redundant modifier key_down: {key}")
                return
            await self.browser.key_down(key, modifiers)
        elif action == "key_up":
            if not key:
                raise ValueError("Key required for key_up action")
            await self.browser.key_up(key, modifiers)
        elif action == "text_input":
            text = payload.get("text")
            if text:
                await self.browser.type_text(text)
        else:
            self._log(logging.WARNING, f"Unknown keyboard action: {action!r}")

    async def _on_configure_stream(self, payload: Dict[str, Any]) -> None:
        await self.streamer.configure(
            target_fps=payload.get("targetFps"),
            quality=payload.get("quality"),
            max_width=payload.get("maxWidth"),
            max_height=payload.get("maxHeight"),
        )

    HANDLERS = {
        "instruction": _on_instruction,
        "manual_intervention_complete": _on_intervention_complete,
        "mouse_action": _on_mouse,
        "keyboard_action": _on_keyboard,
        "configure_stream": _on_configure_stream,
    }
