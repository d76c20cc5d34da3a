"""
Live frame streaming from the session's page.

Two implementations behind one interface, picked at construction:

- PollingStreamer: captures a screenshot on a fixed interval.
- ScreencastStreamer: subscribes to Chrome's Page.screencastFrame events
  and forwards them as they arrive. Every frame is acknowledged before it
  is forwarded; Chrome sends no further frames until it is.

Both run beside the agent loop and share its page. Capture failures are
logged per frame and never stop the stream.
"""

import asyncio
import base64
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

NATIVE_FPS = 60


class StreamMode(str, Enum):
    POLLING = "polling"
    PUSH = "push"


@dataclass
class StreamingConfig:
    """Streaming knobs. Only the streamer mutates this."""
    mode: StreamMode = StreamMode.POLLING
    target_fps: int = 30
    quality: int = 80
    max_width: int = 1280
    max_height: int = 720
    is_active: bool = False

    def __post_init__(self):
        self.target_fps = clamp(self.target_fps, 1, 60)
        self.quality = clamp(self.quality, 1, 100)


@dataclass
class Frame:
    """One image sent to the observer, base64-encoded."""
    data: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        return {"data": self.data, "metadata": self.metadata}


FrameSink = Callable[[Frame], Awaitable[None]]


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def compute_frame_skip(target_fps: int, native_fps: int = NATIVE_FPS) -> int:
    """How many producer frames per emitted frame (60fps native, 30 target -> 2)."""
    return max(1, round(native_fps / clamp(target_fps, 1, 60)))


class FrameStreamer(ABC):
    """Base streamer: owns the config and the sink. Subclasses implement start and stop."""

    SINK_TIMEOUT = 2.0

    def __init__(self, browser, sink: FrameSink, config: Optional[StreamingConfig] = None):
        self.browser = browser
        self.sink = sink
        self.config = replace(config) if config else StreamingConfig()
        self.config.is_active = False

    @property
    def is_active(self) -> bool:
        return self.config.is_active

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        pass

    async def configure(
        self,
        target_fps: Optional[int] = None,
        quality: Optional[int] = None,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
    ) -> None:
        """Change fps/quality/size; restarts the stream if it is running."""
        was_active = self.is_active
        if was_active:
            await self.stop()

        if target_fps is not None:
            self.config.target_fps = clamp(target_fps, 1, 60)
        if quality is not None:
            self.config.quality = clamp(quality, 1, 100)
        if max_width is not None:
            self.config.max_width = max(1, int(max_width))
        if max_height is not None:
            self.config.max_height = max(1, int(max_height))
        logger.info(f"Streaming reconfigured: {self.info()}")

        if was_active:
            await self.start()

    def info(self) -> Dict[str, Any]:
        return {
            "mode": self.config.mode.value,
            "fps": self.config.target_fps,
            "quality": self.config.quality,
            "active": self.is_active,
        }

    async def _deliver(self, frame: Frame) -> None:
        """Hand a frame to the sink without letting a slow sink stall us."""
        try:
            await asyncio.wait_for(self.sink(frame), timeout=self.SINK_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Frame sink exceeded {self.SINK_TIMEOUT}s, frame dropped")
        except Exception as e:
            logger.error(f"Frame sink failed: {e}")


class PollingStreamer(FrameStreamer):
    """Screenshot on a fixed interval derived from target_fps."""

    def __init__(self, browser, sink: FrameSink, config: Optional[StreamingConfig] = None):
        super().__init__(browser, sink, config)
        self.config.mode = StreamMode.POLLING
        self._task: Optional[asyncio.Task] = None

    @property
    def interval(self) -> float:
        return 1.0 / self.config.target_fps

    async def start(self) -> None:
        if self.is_active:
            return
        self.config.is_active = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started screenshot streaming at {self.config.target_fps} FPS")

    async def stop(self) -> None:
        if not self.is_active and self._task is None:
            return
        self.config.is_active = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped screenshot streaming")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while self.is_active:
            started = loop.time()
            await self.capture_once()
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))

    async def capture_once(self) -> bool:
        """Capture and deliver one frame. Returns False if capture failed."""
        try:
            image = await self.browser.screenshot(format="jpeg", quality=self.config.quality)
        except Exception as e:
            logger.error(f"Screenshot capture failed: {e}")
            return False

        await self._deliver(Frame(
            data=base64.b64encode(image).decode("utf-8"),
            metadata={
                "timestamp": int(time.time() * 1000),
                "format": "jpeg",
                "targetFps": self.config.target_fps,
                "quality": self.config.quality,
                "viewport": {
                    "width": getattr(self.browser, "viewport_width", self.config.max_width),
                    "height": getattr(self.browser, "viewport_height", self.config.max_height),
                },
            },
        ))
        return True


class ScreencastStreamer(FrameStreamer):
    """
    Push streaming via CDP Page.startScreencast.

    Falls back to polling if a CDP session cannot be opened (non-Chromium
    engines, closed page).
    """

    CDP_TIMEOUT = 2.0
    DETACH_TIMEOUT = 3.0

    def __init__(self, browser, sink: FrameSink, config: Optional[StreamingConfig] = None):
        super().__init__(browser, sink, config)
        self.config.mode = StreamMode.PUSH
        self._cdp = None
        self._pending: Set[asyncio.Task] = set()
        self._subscribed = False
        self._fallback: Optional[PollingStreamer] = None

    @property
    def frame_skip(self) -> int:
        return compute_frame_skip(self.config.target_fps)

    async def start(self) -> None:
        if self.is_active:
            return

        try:
            self._cdp = await self.browser.new_cdp_session()
            await self._cdp.send("Page.enable")
            self._cdp.on("Page.screencastFrame", self._on_frame)
            self._subscribed = True
            self.config.is_active = True
            await self._cdp.send("Page.startScreencast", {
                "format": "jpeg",
                "quality": self.config.quality,
                "maxWidth": self.config.max_width,
                "maxHeight": self.config.max_height,
                "everyNthFrame": self.frame_skip,
            })
        except Exception as e:
            logger.error(f"CDP streaming unavailable, falling back to screenshot polling: {e}")
            await self.stop()
            self._fallback = PollingStreamer(self.browser, self.sink, self.config)
            await self._fallback.start()
            self.config.is_active = True
            return

        logger.info(
            f"CDP streaming started: {self.config.target_fps} FPS target "
            f"(every {self.frame_skip} frames), quality {self.config.quality}%"
        )

    async def stop(self) -> None:
        if not self.is_active and self._cdp is None and self._fallback is None:
            return
        self.config.is_active = False

        if self._fallback is not None:
            await self._fallback.stop()
            self._fallback = None

        cdp, self._cdp = self._cdp, None
        if cdp is not None:
            if self._subscribed:
                cdp.remove_listener("Page.screencastFrame", self._on_frame)
                self._subscribed = False
            try:
                await asyncio.wait_for(cdp.send("Page.stopScreencast"), timeout=self.CDP_TIMEOUT)
            except Exception as e:
                logger.debug(f"stopScreencast failed: {e}")
            try:
                await asyncio.wait_for(cdp.detach(), timeout=self.DETACH_TIMEOUT)
            except Exception as e:
                logger.error(f"Error detaching CDP session (forcing close): {e}")

        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        logger.info("Stopped CDP streaming and removed listeners")

    def info(self) -> Dict[str, Any]:
        info = super().info()
        if self._fallback is not None:
            info["mode"] = StreamMode.POLLING.value
        else:
            info["frameSkip"] = self.frame_skip
        return info

    def _on_frame(self, params: Dict[str, Any]) -> None:
        if not self.is_active or self._cdp is None:
            return
        task = asyncio.get_running_loop().create_task(self._handle_frame(self._cdp, params))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _handle_frame(self, cdp, params: Dict[str, Any]) -> None:
        try:
            await cdp.send("Page.screencastFrameAck", {"sessionId": params["sessionId"]})
        except Exception as e:
            logger.error(f"Frame ack failed: {e}")

        device = params.get("metadata") or {}
        await self._deliver(Frame(
            data=params["data"],
            metadata={
                "timestamp": int(time.time() * 1000),
                "format": "jpeg",
                "sessionId": params["sessionId"],
                "targetFps": self.config.target_fps,
                "quality": self.config.quality,
                "frameSkip": self.frame_skip,
                "viewport": {
                    "width": device.get("deviceWidth") or self.config.max_width,
                    "height": device.get("deviceHeight") or self.config.max_height,
                },
            },
        ))


def create_streamer(browser, sink: FrameSink, config: Optional[StreamingConfig] = None) -> FrameStreamer:
    """Build the streamer for config.mode."""
    config = config or StreamingConfig()
    if config.mode == StreamMode.PUSH:
        return ScreencastStreamer(browser, sink, config)
    return PollingStreamer(browser, sink, config)
