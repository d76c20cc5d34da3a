"""Settings loaded from the environment (and a .env file, if present)."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .streaming import StreamingConfig, StreamMode

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid {name}={value!r}, using default {default}")
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid {name}={value!r}, using default {default}")
        return default


@dataclass
class Settings:
    """Server, browser, model and agent settings."""
    host: str = "0.0.0.0"
    port: int = 4000

    llm_model: str = "llama3.1:8b"
    ollama_host: Optional[str] = None
    llm_temperature: float = 0.1
    llm_num_ctx: int = 16384

    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    start_url: Optional[str] = "https://www.google.com"

    enable_cdp_streaming: bool = False
    cdp_frame_rate: int = 30
    cdp_quality: int = 80
    cdp_max_width: int = 1280
    cdp_max_height: int = 720

    max_plan_depth: int = 3
    goal_timeout: float = 120
    subgoal_timeout: float = 30
    click_settle_delay: float = 1.0
    iteration_delay: float = 0.5
    dom_char_budget: int = 32000

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    allow_input_while_running: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """
        Build settings from environment variables.

        Variables already set in the environment win over the .env file.
        Unparseable numbers fall back to the default with a warning.
        """
        load_dotenv(env_file)
        d = cls()
        return cls(
            host=_env_str("HOST", d.host),
            port=_env_int("PORT", d.port),
            llm_model=_env_str("LLM_MODEL", d.llm_model),
            ollama_host=_env_str("OLLAMA_HOST", d.ollama_host),
            llm_temperature=_env_float("LLM_TEMPERATURE", d.llm_temperature),
            llm_num_ctx=_env_int("LLM_NUM_CTX", d.llm_num_ctx),
            headless=_env_bool("HEADLESS", d.headless),
            viewport_width=_env_int("VIEWPORT_WIDTH", d.viewport_width),
            viewport_height=_env_int("VIEWPORT_HEIGHT", d.viewport_height),
            start_url=_env_str("START_URL", d.start_url),
            enable_cdp_streaming=_env_bool("ENABLE_CDP_STREAMING", d.enable_cdp_streaming),
            cdp_frame_rate=_env_int("CDP_FRAME_RATE", d.cdp_frame_rate),
            cdp_quality=_env_int("CDP_QUALITY", d.cdp_quality),
            cdp_max_width=_env_int("CDP_MAX_WIDTH", d.cdp_max_width),
            cdp_max_height=_env_int("CDP_MAX_HEIGHT", d.cdp_max_height),
            max_plan_depth=_env_int("MAX_PLAN_DEPTH", d.max_plan_depth),
            goal_timeout=_env_float("GOAL_TIMEOUT", d.goal_timeout),
            subgoal_timeout=_env_float("SUBGOAL_TIMEOUT", d.subgoal_timeout),
            click_settle_delay=_env_float("CLICK_SETTLE_DELAY", d.click_settle_delay),
            iteration_delay=_env_float("ITERATION_DELAY", d.iteration_delay),
            dom_char_budget=_env_int("DOM_CHAR_BUDGET", d.dom_char_budget),
            log_dir=Path(_env_str("LOG_DIR", str(d.log_dir))),
            log_level=_env_str("LOG_LEVEL", d.log_level).upper(),
            allow_input_while_running=_env_bool("ALLOW_INPUT_WHILE_RUNNING", d.allow_input_while_running),
        )

    def streaming_config(self) -> StreamingConfig:
        return StreamingConfig(
            mode=StreamMode.PUSH if self.enable_cdp_streaming else StreamMode.POLLING,
            target_fps=self.cdp_frame_rate,
            quality=self.cdp_quality,
            max_width=self.cdp_max_width,
            max_height=self.cdp_max_height,
        )
