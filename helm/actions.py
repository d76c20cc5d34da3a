"""
Typed agent actions.

Every tool the LLM may call has one frozen dataclass. parse_tool_call()
validates the loosely-typed argument dict at the boundary and returns the
matching variant, or raises UnknownActionError / MalformedArgumentsError.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union

from .errors import MalformedArgumentsError, UnknownActionError


class ActionKind(str, Enum):
    BRANCH = "branch"
    PRUNE = "prune"
    COMPLETE_SUBGOAL = "complete_subgoal"
    NOTE = "note"
    MANUAL_INTERVENTION = "manual_intervention"
    STOP = "stop"
    CLICK = "click"
    TYPE = "type"
    GOTO = "goto"
    GO_BACK = "goBack"
    ENTER = "enter"


@dataclass(frozen=True)
class Branch:
    subgoals: Tuple[str, ...]
    kind = ActionKind.BRANCH


@dataclass(frozen=True)
class Prune:
    kind = ActionKind.PRUNE


@dataclass(frozen=True)
class CompleteSubgoal:
    kind = ActionKind.COMPLETE_SUBGOAL


@dataclass(frozen=True)
class Note:
    message: str
    kind = ActionKind.NOTE


@dataclass(frozen=True)
class ManualIntervention:
    reason: str
    suggestion: str
    kind = ActionKind.MANUAL_INTERVENTION


@dataclass(frozen=True)
class Stop:
    answer: str
    kind = ActionKind.STOP


@dataclass(frozen=True)
class Click:
    element_id: Optional[int] = None
    selector: Optional[str] = None
    kind = ActionKind.CLICK


@dataclass(frozen=True)
class Type:
    text: str
    element_id: Optional[int] = None
    selector: Optional[str] = None
    kind = ActionKind.TYPE


@dataclass(frozen=True)
class Goto:
    url: str
    kind = ActionKind.GOTO


@dataclass(frozen=True)
class GoBack:
    kind = ActionKind.GO_BACK


@dataclass(frozen=True)
class Enter:
    kind = ActionKind.ENTER


Action = Union[
    Branch, Prune, CompleteSubgoal, Note, ManualIntervention, Stop,
    Click, Type, Goto, GoBack, Enter,
]


DEFAULT_REASON = "Manual intervention required"


def suggest_for(reason: str) -> str:
    """Derive a suggestion for the human from the intervention reason."""
    r = reason.lower()
    if "login" in r or "authentication" in r or "sign in" in r:
        return "Please log in to your account using your credentials, then mark the intervention as done."
    if "captcha" in r or "robot" in r:
        return "Please complete the CAPTCHA verification challenge, then mark the intervention as done."
    if "cookie" in r or "gdpr" in r:
        return "Please accept or decline the cookie consent banner, then mark the intervention as done."
    if "two-factor" in r or "2fa" in r or "verification code" in r:
        return "Please enter the verification code from your authenticator app or SMS, then mark the intervention as done."
    if "age" in r.split() or "date of birth" in r:
        return "Please complete the age verification form, then mark the intervention as done."
    if "error" in r or "failed" in r or "timeout" in r:
        return "An error occurred during automated processing. Please resolve it in the browser, then mark the intervention as done."
    return "Please complete the required action in the browser, then mark the intervention as done."


def _element_id(args: Dict[str, Any], action: str) -> Optional[int]:
    raw = args.get("elementId", args.get("element_id"))
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise MalformedArgumentsError(action, f"elementId must be a number, got {raw!r}")
    if isinstance(raw, (int, float)):
        return int(raw)
    # "[4]" or "4"
    match = re.fullmatch(r"\s*\[?\s*(\d+)\s*\]?\s*", str(raw))
    if not match:
        raise MalformedArgumentsError(action, f"elementId must be a number, got {raw!r}")
    return int(match.group(1))


def _optional_str(args: Dict[str, Any], key: str, action: str) -> Optional[str]:
    value = args.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedArgumentsError(action, f"{key} must be a string, got {type(value).__name__}")
    return value or None


def _parse_branch(args):
    raw = args.get("subgoals")
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise MalformedArgumentsError("branch", "subgoals must be an array of strings")
    return Branch(subgoals=tuple(str(s) for s in raw if s is not None))


def _parse_note(args):
    return Note(message=str(args.get("message") or args.get("content") or ""))


def _parse_manual_intervention(args):
    reason = str(args.get("reason") or DEFAULT_REASON)
    suggestion = str(args.get("suggestion") or suggest_for(reason))
    return ManualIntervention(reason=reason, suggestion=suggestion)


def _parse_stop(args):
    return Stop(answer=str(args.get("answer") or args.get("message") or "Task completed"))


def _parse_click(args):
    element_id = _element_id(args, "click")
    selector = _optional_str(args, "selector", "click")
    if element_id is None and selector is None:
        raise MalformedArgumentsError("click", "No valid elementId or selector provided for click")
    return Click(element_id=element_id, selector=selector)


def _parse_type(args):
    element_id = _element_id(args, "type")
    selector = _optional_str(args, "selector", "type")
    if element_id is None and selector is None:
        raise MalformedArgumentsError("type", "No valid elementId or selector provided for type")
    text = args.get("text")
    if not isinstance(text, str):
        raise MalformedArgumentsError("type", "text must be a string")
    return Type(text=text, element_id=element_id, selector=selector)


def _parse_goto(args):
    url = _optional_str(args, "url", "goto")
    if not url:
        raise MalformedArgumentsError("goto", "url is required")
    return Goto(url=url)


PARSERS: Dict[str, Callable[[Dict[str, Any]], Action]] = {
    ActionKind.BRANCH.value: _parse_branch,
    ActionKind.PRUNE.value: lambda args: Prune(),
    ActionKind.COMPLETE_SUBGOAL.value: lambda args: CompleteSubgoal(),
    ActionKind.NOTE.value: _parse_note,
    ActionKind.MANUAL_INTERVENTION.value: _parse_manual_intervention,
    ActionKind.STOP.value: _parse_stop,
    ActionKind.CLICK.value: _parse_click,
    ActionKind.TYPE.value: _parse_type,
    ActionKind.GOTO.value: _parse_goto,
    ActionKind.GO_BACK.value: lambda args: GoBack(),
    ActionKind.ENTER.value: lambda args: Enter(),
}


def parse_tool_call(name: str, arguments: Optional[Dict[str, Any]]) -> Action:
    """
    Validate an LLM tool call.

    Args:
        name: Tool name as returned by the LLM
        arguments: Decoded JSON arguments (may be None)

    Returns:
        The typed action

    Raises:
        UnknownActionError: name is not a supported tool
        MalformedArgumentsError: arguments do not fit the tool
    """
    parser = PARSERS.get(name)
    if parser is None:
        raise UnknownActionError(name)
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise MalformedArgumentsError(name, "arguments must be an object")
    return parser(arguments)
