"""
Hierarchical plan store.

A stack of goals, one per accepted instruction. Each goal carries an
ordered list of subgoals (PENDING / CURRENT / DONE), an action log and
notes. Records are frozen; every mutation replaces the top entry with an
updated copy, so readers holding an earlier record never see it change.

Invariants:
- At most one subgoal per goal is CURRENT.
- DONE subgoals are never reordered or reopened.
- Replacing subgoals keeps everything up to and including CURRENT.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


class SubgoalStatus(str, Enum):
    PENDING = "PENDING"
    CURRENT = "CURRENT"
    DONE = "DONE"


@dataclass(frozen=True)
class Subgoal:
    """A self-contained step within a goal."""
    description: str
    status: SubgoalStatus = SubgoalStatus.PENDING
    started_at: Optional[datetime] = None


@dataclass(frozen=True)
class Goal:
    """Execution record for one user instruction."""
    text: str
    subgoals: Tuple[Subgoal, ...] = ()
    actions: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = ()
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def current_index(self) -> int:
        """Index of the CURRENT subgoal, or -1."""
        for i, sg in enumerate(self.subgoals):
            if sg.status == SubgoalStatus.CURRENT:
                return i
        return -1

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def to_dict(self) -> dict:
        return {
            "goal": self.text,
            "subgoals": [
                {
                    "description": sg.description,
                    "status": sg.status.value,
                    "startedAt": sg.started_at.isoformat() if sg.started_at else None,
                }
                for sg in self.subgoals
            ],
            "actions": list(self.actions),
            "notes": list(self.notes),
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


class PlanStore:
    """
    Stack of goals with subgoal bookkeeping.

    Pure data; no I/O. All "misuse" (operating on an empty stack, completing
    with no CURRENT subgoal, pruning nothing) is a no-op reported through the
    return value rather than an exception.
    """

    MAX_DEPTH = 3
    GOAL_TIMEOUT_SECONDS = 120
    SUBGOAL_TIMEOUT_SECONDS = 30

    def __init__(
        self,
        max_depth: int = MAX_DEPTH,
        goal_timeout: float = GOAL_TIMEOUT_SECONDS,
        subgoal_timeout: float = SUBGOAL_TIMEOUT_SECONDS,
    ):
        self.max_depth = max_depth
        self.goal_timeout = goal_timeout
        self.subgoal_timeout = subgoal_timeout
        self._stack: List[Goal] = []

    # --- stack -------------------------------------------------------------

    def push_goal(self, text: str) -> Goal:
        """Push a new goal. Always succeeds."""
        goal = Goal(text=text)
        self._stack.append(goal)
        return goal

    def pop_completed_goal(self) -> bool:
        """Pop the top goal if it has been completed."""
        current = self.current_goal()
        if current is None or not current.is_completed:
            return False
        self._stack.pop()
        return True

    def complete_goal(self) -> bool:
        """Stamp the top goal as completed regardless of its subgoals."""
        current = self.current_goal()
        if current is None:
            return False
        if not current.is_completed:
            self._replace_top(replace(current, completed_at=datetime.now()))
        return True

    # --- subgoals ----------------------------------------------------------

    def update_subgoals(self, descriptions: List[str]) -> bool:
        """
        Replace everything after the CURRENT subgoal with new PENDING entries.

        If nothing was CURRENT, DONE entries are kept and the first new entry
        becomes CURRENT.

        Returns:
            True if the plan changed.
        """
        current = self.current_goal()
        if current is None:
            return False

        cleaned = [d.strip() for d in descriptions if d and d.strip()]
        if not cleaned:
            return False

        # Anti-runaway guard on nesting
        if self.depth() >= self.max_depth:
            logger.warning(f"Branch ignored: plan depth {self.depth()} >= max {self.max_depth}")
            return False

        current_index = current.current_index
        if current_index >= 0:
            kept = current.subgoals[:current_index + 1]
        else:
            kept = tuple(sg for sg in current.subgoals if sg.status == SubgoalStatus.DONE)
        new = [Subgoal(description=d) for d in cleaned]

        if current_index == -1:
            new[0] = replace(new[0], status=SubgoalStatus.CURRENT, started_at=datetime.now())

        self._replace_top(replace(current, subgoals=tuple(kept) + tuple(new)))
        return True

    def complete_subgoal(self) -> bool:
        """
        Mark the CURRENT subgoal DONE and advance to the next PENDING one.

        Returns:
            True if every subgoal is now DONE (the goal is completed).
        """
        current = self.current_goal()
        if current is None:
            return False

        index = current.current_index
        if index == -1:
            return False

        subgoals = list(current.subgoals)
        subgoals[index] = replace(subgoals[index], status=SubgoalStatus.DONE)
        nxt = index + 1
        if nxt < len(subgoals) and subgoals[nxt].status == SubgoalStatus.PENDING:
            subgoals[nxt] = replace(subgoals[nxt], status=SubgoalStatus.CURRENT, started_at=datetime.now())

        all_done = all(sg.status == SubgoalStatus.DONE for sg in subgoals)
        updated = replace(current, subgoals=tuple(subgoals))
        if all_done:
            updated = replace(updated, completed_at=datetime.now())
        self._replace_top(updated)
        return all_done

    def prune_subgoal(self) -> Optional[Subgoal]:
        """
        Drop the last subgoal.

        If that removed the CURRENT one, the new last entry becomes CURRENT
        (unless it is already DONE).

        Returns:
            The removed subgoal, or None if there was nothing to prune.
        """
        current = self.current_goal()
        if current is None or not current.subgoals:
            return None

        removed = current.subgoals[-1]
        remaining = list(current.subgoals[:-1])

        # DONE entries are never reopened
        if (
            removed.status == SubgoalStatus.CURRENT
            and remaining
            and remaining[-1].status != SubgoalStatus.DONE
        ):
            remaining[-1] = replace(remaining[-1], status=SubgoalStatus.CURRENT, started_at=datetime.now())

        self._replace_top(replace(current, subgoals=tuple(remaining)))
        return removed

    # --- logs --------------------------------------------------------------

    def add_action(self, action: str) -> None:
        current = self.current_goal()
        if current is None:
            return
        self._replace_top(replace(current, actions=current.actions + (action,)))

    def add_note(self, note: str) -> None:
        current = self.current_goal()
        if current is None:
            return
        self._replace_top(replace(current, notes=current.notes + (note,)))

    # --- reads -------------------------------------------------------------

    def check_timeouts(self, now: Optional[datetime] = None) -> List[str]:
        """Advisory warnings for a goal or CURRENT subgoal running too long."""
        current = self.current_goal()
        if current is None:
            return []

        now = now or datetime.now()
        warnings = []

        elapsed = (now - current.started_at).total_seconds()
        if elapsed > self.goal_timeout:
            warnings.append(
                f'Goal "{current.text}" has been running for {round(elapsed)}s '
                f"(timeout: {self.goal_timeout:g}s)"
            )

        subgoal = self.current_subgoal()
        if subgoal and subgoal.started_at:
            elapsed = (now - subgoal.started_at).total_seconds()
            if elapsed > self.subgoal_timeout:
                warnings.append(
                    f'Subgoal "{subgoal.description}" has been running for {round(elapsed)}s '
                    f"(timeout: {self.subgoal_timeout:g}s)"
                )

        return warnings

    def current_goal(self) -> Optional[Goal]:
        return self._stack[-1] if self._stack else None

    def current_subgoal(self) -> Optional[Subgoal]:
        current = self.current_goal()
        if current is None:
            return None
        index = current.current_index
        return current.subgoals[index] if index >= 0 else None

    def depth(self) -> int:
        return len(self._stack)

    def get_stack(self) -> List[Goal]:
        return list(self._stack)

    def active_subgoals(self) -> List[str]:
        """Subgoal descriptions annotated with their status."""
        current = self.current_goal()
        if current is None:
            return []

        lines = []
        for sg in current.subgoals:
            if sg.status == SubgoalStatus.DONE:
                lines.append(f"{sg.description} (COMPLETED)")
            elif sg.status == SubgoalStatus.CURRENT:
                lines.append(f"{sg.description} (CURRENT)")
            else:
                lines.append(sg.description)
        return lines

    def recent_actions(self, limit: Optional[int] = None) -> List[str]:
        current = self.current_goal()
        if current is None:
            return []
        actions = list(current.actions)
        return actions[-limit:] if limit else actions

    def notes(self) -> List[str]:
        current = self.current_goal()
        return list(current.notes) if current else []

    def summary(self) -> List[dict]:
        """Goals and their action logs, oldest first."""
        return [{"goal": g.text, "actions": list(g.actions)} for g in self._stack]

    def _replace_top(self, goal: Goal) -> None:
        self._stack[-1] = goal
