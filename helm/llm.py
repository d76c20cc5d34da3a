"""Ollama client for tool-calling browser agents."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import ollama

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A tool the LLM wants to invoke."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMResponse:
    """Free-text content plus zero or more tool calls."""
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)


SYSTEM_PROMPT = """You are a browser agent. Your job is to translate user instructions into actions on a Chrome browser.
You can click on elements, type into fields, navigate to URLs, and go back in browser history.

PLANNING RULES (very important):
- Use 'branch' to break the user goal into sub-goals, in the order you intend to execute them.
- Finish a sub-goal with 'complete_subgoal'.

Think step-by-step: "What must I do inside the current sub-goal next?" and "What is the next sub-goal?"

Planning actions:
- 'branch' adds / replaces the sub-goals after the current one (use the 'subgoals' array).
- 'prune' removes the most recent sub-goal.
- 'complete_subgoal' marks the CURRENT sub-goal as COMPLETED and advances to the next one.
- 'note' records an observation, including why an action failed.
- 'manual_intervention' requests human help (login pages, CAPTCHAs, two-factor prompts,
  payment forms, anything that needs human judgment or credentials).
- 'stop' completes the task.

SUB-GOAL STATUS: no status means pending, (CURRENT) is the one you are working on,
(COMPLETED) is finished. Sub-goals should be atomic and self-contained.

COMPLETION: When the task is done you MUST call 'stop' with your final answer.
Do not ask "what else would you like me to do" - call 'stop' instead.

For clicking elements, use the element IDs shown in brackets [number] in the page content.
For typing text, use the element IDs of input fields.
Use 'enter' to press the Enter key, e.g. after typing in a search box.
"""


def _tool(name: str, description: str, properties: Optional[dict] = None, required: Optional[list] = None) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties or {},
                "required": required or [],
            },
        },
    }


ELEMENT_ID = {
    "type": "number",
    "description": "The ID number of the element (from the page content brackets [number])",
}

TOOLS = [
    _tool("click", "Click on an element using its ID number from the page",
          {"elementId": ELEMENT_ID}, ["elementId"]),
    _tool("type", "Type text into an input field using its ID number from the page",
          {"elementId": ELEMENT_ID, "text": {"type": "string", "description": "The text to type"}},
          ["elementId", "text"]),
    _tool("enter", "Press the Enter key to submit forms or trigger actions"),
    _tool("goto", "Navigate to a specific URL",
          {"url": {"type": "string", "description": "The URL to navigate to"}}, ["url"]),
    _tool("goBack", "Go back to the previous page in browser history"),
    _tool("branch", "Add/replace the sub-goals after the current sub-goal",
          {"subgoals": {"type": "array", "items": {"type": "string"},
                        "description": "Sub-goals to add, in execution order"}},
          ["subgoals"]),
    _tool("prune", "Remove the most recent sub-goal (cannot remove user goals)"),
    _tool("complete_subgoal", "Mark the current sub-goal as completed and advance to the next one"),
    _tool("note", "Record an important observation or piece of information",
          {"message": {"type": "string", "description": "The observation to record"}}, ["message"]),
    _tool("manual_intervention",
          "Request human intervention for tasks that require human input (login pages, CAPTCHAs, etc.)",
          {"reason": {"type": "string", "description": "Why manual intervention is needed"},
           "suggestion": {"type": "string", "description": "What the human should do"}},
          ["reason", "suggestion"]),
    _tool("stop", "REQUIRED: Call this when the task is complete. Use instead of conversational responses.",
          {"answer": {"type": "string", "description": "The final answer or confirmation of what was accomplished"}},
          ["answer"]),
]


class OllamaClient:
    """Async client for an Ollama model with tool calling."""

    def __init__(
        self,
        model: str = "llama3.1:8b",
        host: Optional[str] = None,
        temperature: float = 0.1,
        num_ctx: int = 16384,
    ):
        self.model = model
        self.temperature = temperature
        self.num_ctx = num_ctx
        self.client = ollama.AsyncClient(host=host)

    async def chat(self, messages: List[Dict[str, str]]) -> LLMResponse:
        """
        Send messages (system prompt prepended) and return content + tool calls.

        Args:
            messages: Chat messages, e.g. [{"role": "user", "content": context}]

        Returns:
            LLMResponse
        """
        response = await self.client.chat(
            model=self.model,
            messages=[{"role": "system", "content": SYSTEM_PROMPT}, *messages],
            tools=TOOLS,
            options={
                "num_ctx": self.num_ctx,  # Larger context for page content
                "temperature": self.temperature,  # Low temp for deterministic actions
            },
        )
        result = parse_response(response)
        logger.debug(f"LLM response: content={result.content[:200]!r} tools={[c.name for c in result.tool_calls]}")
        return result


def parse_response(response) -> LLMResponse:
    """Extract content and tool calls from an Ollama chat response."""
    message = response["message"]
    content = message.get("content") or ""

    calls = []
    for call in message.get("tool_calls") or []:
        function = call["function"]
        arguments = function.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError as e:
                logger.warning(f"Unparseable arguments for {function['name']}: {e}")
                arguments = {"_raw": arguments}
        calls.append(ToolCall(name=function["name"], arguments=dict(arguments)))

    return LLMResponse(content=content.strip(), tool_calls=calls)
