"""rhea-helm: LLM-driven browser agent with live frame streaming."""

from .plan import PlanStore, Goal, Subgoal, SubgoalStatus
from .dom import ElementDescriptor, PageObservation, extract_observation
from .browser import Browser, retry_on_error, is_context_destroyed
from .streaming import (
    StreamingConfig,
    StreamMode,
    Frame,
    FrameStreamer,
    PollingStreamer,
    ScreencastStreamer,
    create_streamer,
    compute_frame_skip,
)
from .actions import ActionKind, parse_tool_call
from .dispatcher import SignalState, ToolDispatcher
from .llm import OllamaClient, ToolCall, LLMResponse
from .agent import AgentLoop, build_context
from .session import Session
from .config import Settings
from .errors import (
    HelmError,
    BrowserNotInitializedError,
    ActionError,
    UnknownActionError,
    MalformedArgumentsError,
    ElementResolutionError,
)

__all__ = [
    # Plan
    "PlanStore",
    "Goal",
    "Subgoal",
    "SubgoalStatus",
    # Page extraction
    "ElementDescriptor",
    "PageObservation",
    "extract_observation",
    # Browser
    "Browser",
    "retry_on_error",
    "is_context_destroyed",
    # Streaming
    "StreamingConfig",
    "StreamMode",
    "Frame",
    "FrameStreamer",
    "PollingStreamer",
    "ScreencastStreamer",
    "create_streamer",
    "compute_frame_skip",
    # Actions
    "ActionKind",
    "parse_tool_call",
    "SignalState",
    "ToolDispatcher",
    # LLM
    "OllamaClient",
    "ToolCall",
    "LLMResponse",
    # Agent
    "AgentLoop",
    "build_context",
    # Session / config
    "Session",
    "Settings",
    # Errors
    "HelmError",
    "BrowserNotInitializedError",
    "ActionError",
    "UnknownActionError",
    "MalformedArgumentsError",
    "ElementResolutionError",
]
