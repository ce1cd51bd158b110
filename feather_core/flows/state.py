"""State definition for the agent run graph."""

from __future__ import annotations

from typing import Any, List, Optional, TypedDict

from feather_core.tools.definitions import FunctionCall


class RunState(TypedDict, total=False):
    """State shared across run graph nodes."""

    iteration: int
    max_iterations: int
    function_calls: List[FunctionCall]
    last_content: str
    # set once the run has a final AgentRunResult
    result: Optional[Any]
