"""Helm agent - the main control loop."""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .dispatcher import Emitter, SignalState, ToolDispatcher
from .dom import ElementDescriptor, PageObservation
from .plan import PlanStore

logger = logging.getLogger(__name__)

RECENT_ACTION_COUNT = 3


def build_context(plan: PlanStore, observation: PageObservation) -> str:
    """
    Render the plan and the page into the prompt for one LLM call.

    Args:
        plan: Plan store for this session
        observation: Fresh page observation

    Returns:
        Context string
    """
    goal = plan.current_goal()
    stack = plan.get_stack()
    parts: List[str] = []

    if len(stack) > 1:
        parts.append("**Instruction Sequence:**")
        for i, g in enumerate(stack, 1):
            status = "(COMPLETED)" if g.is_completed else "(CURRENT)" if g is goal else ""
            parts.append(f"{i}. {g.text} {status}".rstrip())
        parts.append("")
    elif goal:
        parts.append(f"Task: {goal.text}")

    if goal:
        parts.append(f"Current Goal: {goal.text}")

        subgoals = plan.active_subgoals()
        if subgoals:
            parts.append("Active Subgoals:")
            parts.extend(f"  {i}. {line}" for i, line in enumerate(subgoals, 1))
        else:
            parts.append("No subgoals yet - Consider using 'branch' to break this goal into steps.")
            parts.append("If the goal is already achieved, use 'stop' with your answer.")

        recent = plan.recent_actions(RECENT_ACTION_COUNT)
        if recent:
            parts.append(f"Recent Actions: {', '.join(recent)}")

        notes = plan.notes()
        if notes:
            parts.append(f"Notes: {'; '.join(notes)}")

        parts.append(
            f"Plan Depth: {plan.depth()} goals, {len(goal.subgoals)} subgoals "
            f"(use 'branch' to add subgoals, 'prune' to remove the last one)"
        )

        warnings = plan.check_timeouts()
        if warnings:
            parts.append("Timeout Warnings:")
            parts.extend(f"  - {w}" for w in warnings)

        if goal.actions and not goal.subgoals:
            parts.append(
                "IMPORTANT: If the task is complete, call 'stop' with your answer "
                "instead of taking more actions."
            )

    parts.append("")
    parts.append(f"**Current Page:**\n{observation.content}")
    parts.append("")
    parts.append("Use element IDs [number] for click actions (e.g., click with elementId: 1)")
    return "\n".join(parts)


class AgentLoop:
    """
    Observe -> think -> act loop for one session.

    The loop:
    1. Pop the top goal if it is already completed
    2. Observe the page (fresh element map)
    3. Build context from plan + page
    4. Ask the LLM for tool calls
    5. Dispatch them in order, stopping early on completion or pause
    6. Repeat until complete, paused, or the stack is empty

    Only one run loop is active at a time; run() waits for the loop in
    progress rather than starting a second one. A new instruction changes
    the stack only between iterations, so an in-flight LLM answer is always
    applied to the goal it was asked about.
    """

    def __init__(
        self,
        browser,
        llm,
        emit: Emitter,
        plan: Optional[PlanStore] = None,
        settle_delay: float = 1.0,
        iteration_delay: float = 0.5,
        run_log_dir: Optional[Path] = None,
        session_id: Optional[str] = None,
    ):
        self.browser = browser
        self.llm = llm
        self.emit = emit
        self.plan = plan or PlanStore()
        self.signals = SignalState()
        self.dispatcher = ToolDispatcher(
            self.plan, browser, self.signals, emit, settle_delay=settle_delay
        )
        self.iteration_delay = iteration_delay
        self.run_log_dir = Path(run_log_dir) if run_log_dir else None
        self.session_id = session_id or "local"
        self.element_map: Dict[int, ElementDescriptor] = {}
        self._lock = asyncio.Lock()
        self._step_lock = asyncio.Lock()
        self._iterations = 0

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def _log(self, level: int, message: str) -> None:
        logger.log(level, f"[{self.session_id}] {message}")

    async def on_instruction(self, text: str) -> None:
        """Accept a new instruction: push a goal and run."""
        async with self._step_lock:
            while self.plan.pop_completed_goal():
                pass
            self.plan.push_goal(text)
            self.signals.is_complete = False
        self._log(logging.INFO, f"New goal (depth {self.plan.depth()}): {text}")
        await self.run()

    async def resume(self) -> None:
        """Continue after a human handled a manual intervention."""
        if not self.signals.is_paused_for_manual_intervention:
            self._log(logging.DEBUG, "Ignoring resume: not paused for manual intervention")
            return

        self.signals.is_paused_for_manual_intervention = False
        self.plan.add_action("manual_intervention_complete()")
        self.plan.add_note("Manual intervention complete. User unblocked the issue.")
        self._log(logging.INFO, "Resuming after manual intervention")

        if self.plan.depth() > 0 and not self.signals.is_complete:
            await self.run()

    async def run(self) -> None:
        """Iterate until complete, paused for a human, or out of goals."""
        async with self._lock:
            iterated = False
            while not self.signals.should_halt and self.plan.depth() > 0:
                async with self._step_lock:
                    goal = self.plan.current_goal()
                    if goal.is_completed:
                        self.plan.pop_completed_goal()
                        self._log(logging.INFO, f"Goal finished: {goal.text}")
                        continue

                    iterated = True
                    if not await self._iterate():
                        break
                if self.iteration_delay:
                    await asyncio.sleep(self.iteration_delay)

            if iterated and self.signals.is_complete:
                self.save_run_log()

    async def _iterate(self) -> bool:
        """One observe/think/act cycle. Returns False if the loop paused on a fault."""
        self._iterations += 1
        self._log(logging.INFO, f"--- Iteration {self._iterations} ---")

        try:
            observation = await self.browser.observe()
        except Exception as e:
            await self._pause_on_fault("observe", e)
            return False

        self.element_map = observation.element_map
        context = build_context(self.plan, observation)

        try:
            response = await self.llm.chat([{"role": "user", "content": context}])
        except Exception as e:
            await self._pause_on_fault("llm", e)
            return False

        self._log(logging.INFO, f"LLM returned {len(response.tool_calls)} tool call(s)")

        for call in response.tool_calls:
            await self.dispatcher.dispatch(call, self.element_map)
            if self.signals.should_halt:
                break

        if response.content:
            goal = self.plan.current_goal()
            await self.emit("agent_response", {
                "response": response.content,
                "planDepth": self.plan.depth(),
                "currentGoal": goal.text if goal else None,
            })
        return True

    async def _pause_on_fault(self, stage: str, error: BaseException) -> None:
        """Observation or LLM failed: tell the observer and hand over to a human."""
        message = str(error)[:ToolDispatcher.MAX_ERROR_LENGTH] or type(error).__name__
        self._log(logging.ERROR, f"{stage} failed: {message}")
        self.signals.is_paused_for_manual_intervention = True
        self.plan.add_note(f"{stage} failed: {message}")

        try:
            current_url = await self.browser.current_url()
        except Exception as e:
            self._log(logging.WARNING, f"Could not read URL for manual intervention: {e}")
            current_url = ""

        await self.emit("agent_error", {"action": stage, "error": message})
        await self.emit("manual_intervention", {
            "reasoning": f"The agent could not continue: {stage} failed ({message})",
            "suggestion": "Check the browser and the model server, then mark the intervention as done to retry.",
            "currentUrl": current_url,
            "timestamp": datetime.now().isoformat(),
        })

    def run_data(self) -> Dict[str, Any]:
        return {
            "session": self.session_id,
            "saved_at": datetime.now().isoformat(),
            "iterations": self._iterations,
            "instructions": [g.text for g in self.plan.get_stack()],
            "answer": self.dispatcher.answer,
            "goals": [g.to_dict() for g in self.plan.get_stack()],
        }

    def save_run_log(self) -> Optional[Path]:
        """Write the plan stack to run_<session>_<timestamp>.json."""
        if self.run_log_dir is None:
            return None
        try:
            self.run_log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            path = self.run_log_dir / f"run_{self.session_id}_{stamp}.json"
            with open(path, "w") as f:
                json.dump(self.run_data(), f, indent=2, default=str)
        except OSError as e:
            self._log(logging.ERROR, f"Could not write run log: {e}")
            return None
        self._log(logging.INFO, f"Run log saved to {path}")
        return path
