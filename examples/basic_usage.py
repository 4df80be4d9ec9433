"""Basic usage example: ingest one agent run and inspect it."""

from __future__ import annotations

import asyncio
from pathlib import Path

from pydantic import BaseModel

from agenttrace import EventProcessor, SQLiteStore, get_trace_detail
from agenttrace.models import ChainEndEvent, ChainStartEvent, ToolEndEvent, ToolStartEvent
from agenttrace.renderers import render_trace
from agenttrace.serializers import encode_batch


def _agent_run() -> list[BaseModel]:
    events: list[BaseModel] = [
        ChainStartEvent(
            trace_id="demo",
            run_id="agent",
            timestamp=1_000,
            chain_name="weather_agent",
            inputs={"question": "What is the weather in San Francisco?"},
            metadata={"projectName": "examples"},
        )
    ]
    # the agent keeps asking the same question, which trips loop detection
    for index in range(3):
        run_id = f"lookup-{index}"
        start = 1_100 + index * 200
        events.append(
            ToolStartEvent(
                trace_id="demo",
                run_id=run_id,
                parent_run_id="agent",
                timestamp=start,
                tool_name="weather_api",
                input={"location": "San Francisco"},
            )
        )
        events.append(
            ToolEndEvent(
                trace_id="demo",
                run_id=run_id,
                timestamp=start + 150,
                output={"temperature_f": 62, "condition": "foggy"},
                cost=0.0004,
            )
        )
    events.append(
        ChainEndEvent(trace_id="demo", run_id="agent", timestamp=1_800, outputs={"answer": "62F, foggy"})
    )
    return events


async def main() -> None:
    output_dir = Path("artifacts")
    output_dir.mkdir(exist_ok=True)

    async with SQLiteStore(output_dir / "traces.db") as store:
        processor = EventProcessor(store)
        applied = await processor.process_batch(encode_batch(_agent_run()))
        detail = await get_trace_detail(store, "demo")

    print(f"Applied {applied} events")
    if detail is not None:
        print(render_trace(detail, verbosity="full"))


if __name__ == "__main__":
    asyncio.run(main())
