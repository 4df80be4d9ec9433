"""Node model, typed payload variants, and related enumerations."""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class NodeStatus(StrEnum):
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_finished(self) -> bool:
        return self is not NodeStatus.RUNNING


class NodeType(StrEnum):
    LLM = "llm"
    TOOL = "tool"
    CHAIN = "chain"
    AGENT = "agent"
    RETRIEVER = "retriever"
    CUSTOM = "custom"


class TokenUsage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prompt: int = 0
    completion: int = 0
    total: int = 0


class LLMPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["llm"] = "llm"
    model: str | None = None
    prompts: list[str] = Field(default_factory=list)
    response: str | None = None
    invocation_params: dict[str, object] = Field(default_factory=dict)


class ToolPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["tool"] = "tool"
    tool_name: str
    input: Any = None
    output: Any = None


class ChainPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: Literal["chain"] = "chain"
    chain_name: str | None = None
    inputs: Any = None
    outputs: Any = None


class GenericPayload(BaseModel):
    """Payload for node types without a dedicated variant (agent, retriever, ...)."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["generic"] = "generic"
    values: dict[str, object] = Field(default_factory=dict)


NodePayload = Annotated[
    LLMPayload | ToolPayload | ChainPayload | GenericPayload,
    Field(discriminator="kind"),
]


class Node(BaseModel):
    """Single unit of execution (a "run") inside a trace. Times are epoch ms."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: uuid4().hex)
    trace_id: str
    run_id: str
    parent_run_id: str | None = None
    type: str
    status: NodeStatus = NodeStatus.RUNNING
    start_time: int
    end_time: int | None = None
    data: NodePayload = Field(default_factory=GenericPayload)
    cost: float | None = None
    tokens: TokenUsage | None = None
    latency: int | None = None
    error: str | None = None

    @property
    def tool_name(self) -> str | None:
        if isinstance(self.data, ToolPayload):
            return self.data.tool_name
        return None
