"""Tool dispatcher - turns LLM tool calls into plan mutations and browser actions."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from .actions import (
    Action,
    Branch,
    Click,
    CompleteSubgoal,
    Enter,
    GoBack,
    Goto,
    ManualIntervention,
    Note,
    Prune,
    Stop,
    Type,
    parse_tool_call,
)
from .dom import ElementDescriptor
from .errors import ActionError, ElementResolutionError, UnknownActionError
from .llm import ToolCall
from .plan import PlanStore

logger = logging.getLogger(__name__)

Emitter = Callable[[str, Dict[str, Any]], Awaitable[None]]


@dataclass
class SignalState:
    """Flags that decide whether the agent loop keeps iterating."""
    is_complete: bool = False
    is_paused_for_manual_intervention: bool = False

    @property
    def should_halt(self) -> bool:
        return self.is_complete or self.is_paused_for_manual_intervention


class ToolDispatcher:
    """
    Execute one tool call at a time against a plan and a browser.

    Faults never propagate: they are recorded in the goal's action log and
    notes, and surfaced to the observer as agent_error events.
    """

    MAX_ERROR_LENGTH = 200

    def __init__(
        self,
        plan: PlanStore,
        browser,
        signals: SignalState,
        emit: Emitter,
        settle_delay: float = 1.0,
    ):
        self.plan = plan
        self.browser = browser
        self.signals = signals
        self.emit = emit
        self.settle_delay = settle_delay
        self.answer: Optional[str] = None

    async def dispatch(self, call: ToolCall, element_map: Optional[Dict[int, ElementDescriptor]] = None) -> None:
        """
        Run a tool call.

        Args:
            call: Tool call from the LLM
            element_map: Element map of the observation the LLM was shown
        """
        logger.info(f"Tool call: {call.name}({call.arguments})")
        try:
            action = parse_tool_call(call.name, call.arguments)
        except UnknownActionError as e:
            logger.warning(f"{e}, ignoring")
            return
        except ActionError as e:
            await self._record_error(call.name, e)
            return

        try:
            await self._execute(action, element_map or {})
        except Exception as e:
            await self._record_error(call.name, e)

    async def _execute(self, action: Action, element_map: Dict[int, ElementDescriptor]) -> None:
        if isinstance(action, Branch):
            changed = self.plan.update_subgoals(list(action.subgoals))
            if not changed:
                logger.warning(f"branch({list(action.subgoals)}) left the plan unchanged")
            self.plan.add_action(f"branch([{', '.join(action.subgoals)}])")

        elif isinstance(action, Prune):
            removed = self.plan.prune_subgoal()
            if removed is None:
                logger.warning("prune() with no subgoals to remove")
                self.plan.add_action("prune()")
            else:
                self.plan.add_action(f"prune({removed.description})")

        elif isinstance(action, CompleteSubgoal):
            finished = self.plan.complete_subgoal()
            if finished:
                logger.info("All subgoals completed")
                self.plan.add_action("complete_subgoal() → all subgoals completed")
            else:
                nxt = self.plan.current_subgoal()
                now_on = nxt.description if nxt else "nothing"
                self.plan.add_action(f"complete_subgoal() → now on: {now_on}")

        elif isinstance(action, Note):
            self.plan.add_note(action.message)
            self.plan.add_action(f"note({action.message})")

        elif isinstance(action, ManualIntervention):
            await self._manual_intervention(action)

        elif isinstance(action, Stop):
            await self._stop(action)

        elif isinstance(action, Click):
            await self._click(action, element_map)

        elif isinstance(action, Type):
            descriptor = self._resolve(action.element_id, action.selector, element_map, "type")
            selector = descriptor.selector if descriptor else action.selector
            await self.browser.type(selector, action.text)
            label = descriptor.name if descriptor else selector
            self.plan.add_action(f'type("{label}", "{action.text}")')

        elif isinstance(action, Goto):
            await self.browser.navigate(action.url)
            self.plan.add_action(f"goto({action.url})")

        elif isinstance(action, GoBack):
            await self.browser.go_back()
            self.plan.add_action("goBack()")

        elif isinstance(action, Enter):
            await self.browser.press_enter()
            self.plan.add_action("enter()")

    def _resolve(
        self,
        element_id: Optional[int],
        selector: Optional[str],
        element_map: Dict[int, ElementDescriptor],
        action: str,
    ) -> Optional[ElementDescriptor]:
        """Look up an element ID; None means use the raw selector."""
        if element_id is not None and element_id in element_map:
            return element_map[element_id]
        if selector:
            return None
        raise ElementResolutionError(action, f"Element [{element_id}] not found on the current page")

    async def _click(self, action: Click, element_map: Dict[int, ElementDescriptor]) -> None:
        descriptor = self._resolve(action.element_id, action.selector, element_map, "click")
        if descriptor is None:
            await self.browser.click(action.selector)
            self.plan.add_action(f"click({action.selector})")
            return

        before = await self.browser.current_url()
        await self.browser.click(descriptor.selector)
        await asyncio.sleep(self.settle_delay)
        after = await self.browser.current_url()

        outcome = "navigated to new page" if after != before else "success"
        self.plan.add_action(f'click("{descriptor.name}") → {outcome}')

    async def _manual_intervention(self, action: ManualIntervention) -> None:
        self.signals.is_paused_for_manual_intervention = True
        self.plan.add_action(f'manual_intervention("{action.reason}")')

        try:
            current_url = await self.browser.current_url()
        except Exception as e:
            logger.warning(f"Could not read URL for manual intervention: {e}")
            current_url = ""

        logger.info(f"Manual intervention requested: {action.reason}")
        await self.emit("manual_intervention", {
            "reasoning": action.reason,
            "suggestion": action.suggestion,
            "currentUrl": current_url,
            "timestamp": datetime.now().isoformat(),
        })

    async def _stop(self, action: Stop) -> None:
        self.signals.is_complete = True
        self.answer = action.answer
        self.plan.add_action(f"stop({action.answer})")
        self.plan.complete_goal()
        logger.info(f"Task complete: {action.answer}")
        await self.emit("agent_complete", {
            "answer": action.answer,
            "planSummary": self.plan.summary(),
        })

    async def _record_error(self, name: str, error: BaseException) -> None:
        message = str(error) or type(error).__name__
        if len(message) > self.MAX_ERROR_LENGTH:
            message = message[:self.MAX_ERROR_LENGTH] + "..."
        logger.error(f"Action {name} failed: {message}")

        self.plan.add_action(f"error({name}: {message})")
        self.plan.add_note(f"{name} failed: {message}")
        await self.emit("agent_error", {"action": name, "error": message})
