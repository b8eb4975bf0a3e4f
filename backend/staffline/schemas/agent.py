"""Schemas exchanged with the language model and returned by a turn."""

from typing import Optional, List, Literal
from pydantic import BaseModel, Field


class ToolCall(BaseModel):
    """A tool invocation requested by the model. arguments is raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"


class AgentResponse(BaseModel):
    """Either a final text answer or a batch of tool calls."""

    type: Literal["text", "tool_calls"]
    content: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)


class ToolExecution(BaseModel):
    """Record of one executed tool call."""

    name: str
    ok: bool
    error_type: Optional[str] = None


class AgentResult(BaseModel):
    """Outcome of one agent run."""

    reply: str
    rounds: int
    exhausted: bool = False
    tool_executions: List[ToolExecution] = Field(default_factory=list)
