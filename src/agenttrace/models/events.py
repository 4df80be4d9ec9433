"""Wire events sent from an instrumented process to the ingestion side.

Events travel as camelCase JSON objects discriminated by ``eventType``;
a batch is a JSON array of events in producer order.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .node import TokenUsage


class _EventBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    event_id: str = Field(default_factory=lambda: uuid4().hex)
    trace_id: str
    run_id: str
    parent_run_id: str | None = None
    timestamp: int
    metadata: dict[str, object] = Field(default_factory=dict)


class LLMStartEvent(_EventBase):
    event_type: Literal["llm_start"] = "llm_start"
    model: str | None = None
    prompts: list[str] = Field(default_factory=list)
    invocation_params: dict[str, object] = Field(default_factory=dict)


class LLMEndEvent(_EventBase):
    event_type: Literal["llm_end"] = "llm_end"
    response: str | None = None
    tokens: TokenUsage | None = None
    cost: float | None = None
    latency: int | None = None


class ToolStartEvent(_EventBase):
    event_type: Literal["tool_start"] = "tool_start"
    tool_name: str
    input: Any = None


class ToolEndEvent(_EventBase):
    event_type: Literal["tool_end"] = "tool_end"
    tool_name: str | None = None
    output: Any = None
    cost: float | None = None
    latency: int | None = None


class ChainStartEvent(_EventBase):
    event_type: Literal["chain_start"] = "chain_start"
    chain_name: str | None = None
    inputs: Any = None


class ChainEndEvent(_EventBase):
    event_type: Literal["chain_end"] = "chain_end"
    chain_name: str | None = None
    outputs: Any = None
    latency: int | None = None


class ErrorEvent(_EventBase):
    event_type: Literal["error"] = "error"
    message: str = Field(validation_alias=AliasChoices("message", "error"))
    stack: str | None = Field(
        default=None, validation_alias=AliasChoices("stack", "stackTrace")
    )


StartEvent = LLMStartEvent | ToolStartEvent | ChainStartEvent
EndEvent = LLMEndEvent | ToolEndEvent | ChainEndEvent

TraceEvent = Annotated[
    LLMStartEvent
    | LLMEndEvent
    | ToolStartEvent
    | ToolEndEvent
    | ChainStartEvent
    | ChainEndEvent
    | ErrorEvent,
    Field(discriminator="event_type"),
]

event_adapter: TypeAdapter[Any] = TypeAdapter(TraceEvent)
batch_adapter: TypeAdapter[Any] = TypeAdapter(list[TraceEvent])
