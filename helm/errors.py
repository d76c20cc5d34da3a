"""Exceptions raised by helm components."""


class HelmError(Exception):
    """Base class for helm errors."""


class BrowserNotInitializedError(HelmError):
    """A browser operation was attempted before initialize()."""

    def __init__(self, message: str = "Browser not initialized"):
        super().__init__(message)


class ActionError(HelmError):
    """An LLM tool call could not be turned into a browser or plan action."""

    def __init__(self, action: str, message: str):
        self.action = action
        super().__init__(message)


class UnknownActionError(ActionError):
    """The tool name does not match any supported action."""

    def __init__(self, action: str):
        super().__init__(action, f"Unknown action: {action}")


class MalformedArgumentsError(ActionError):
    """The tool arguments do not fit the action's expected shape."""


class ElementResolutionError(ActionError):
    """An element ID is not in the current observation and no selector was given."""
