# apply_ai_code_stream.py - POST /api/apply-ai-code-stream (Server-Sent Events)

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Set, Union

from loguru import logger

from codegen.parser import ParsedResponse, parse_ai_response
from routes.apply_ai_code import read_apply_body, record_outcome
from shared_state import AppServices

# applies outlive a disconnected client; hold references until they finish
_background: Set[asyncio.Task] = set()


def sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data)}\n\n"


async def event_stream(
    services: AppServices, parsed: ParsedResponse, packages: List[Any], is_edit: bool
) -> AsyncIterator[str]:
    queue: "asyncio.Queue[Any]" = asyncio.Queue()

    async def run_apply() -> None:
        try:
            outcome = await services.pipeline.apply(parsed, packages, is_edit=is_edit, on_progress=queue.put)
            record_outcome(services, parsed, outcome, is_edit)
        except Exception as e:
            logger.error(f"[apply-ai-code-stream] Stream error: {e}")
            await queue.put({"type": "error", "error": f"Application failed: {e}"})
        finally:
            await queue.put(None)

    task = asyncio.create_task(run_apply())
    _background.add(task)
    task.add_done_callback(_background.discard)

    try:
        if parsed.warnings:
            yield sse({"type": "warning", "warnings": parsed.warnings})
        while True:
            event = await queue.get()
            if event is None:
                break
            yield sse(event)
    finally:
        if not task.done():
            logger.info("[apply-ai-code-stream] Client disconnected, apply continues in background")


async def POST(services: AppServices, body: Dict[str, Any]) -> Union[Dict[str, Any], AsyncIterator[str]]:
    """Validate and parse, then return an SSE event iterator (or an error dict)."""
    try:
        response_text, is_edit, packages = read_apply_body(body)
    except ValueError as e:
        return {"success": False, "error": str(e), "status": 400}

    logger.info(f"[apply-ai-code-stream] Processing {len(response_text)} chars, isEdit: {is_edit}")
    parsed = parse_ai_response(response_text)
    return event_stream(services, parsed, packages, is_edit)
