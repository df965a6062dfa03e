"""Tool entrypoints exposed to the assistant."""
from .analytics import analytics_tool_specs
from .lookups import LOOKUP_TOOLS, lookup_tool_specs
from .types import ToolServices, ToolSpec, TurnContext


def build_tool_specs() -> list[ToolSpec]:
    """The full tool catalogue in the order it is described to the model."""
    return [*lookup_tool_specs(), *analytics_tool_specs()]


__all__ = [
    "LOOKUP_TOOLS",
    "ToolServices",
    "ToolSpec",
    "TurnContext",
    "analytics_tool_specs",
    "build_tool_specs",
    "lookup_tool_specs",
]
